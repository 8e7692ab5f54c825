"""Character-window text chunking with separator-aware breaks and overlap.

Plain text is split with RecursiveCharacterTextSplitter: pieces are cut at
the most preferred separator present (paragraph, line, sentence, clause,
word, then character) and packed into chunks of at most chunk_size
characters, consecutive chunks sharing up to chunk_overlap characters.

Markdown is first split on ATX headers with MarkdownHeaderTextSplitter; each
section is chunked with its header trail ("Guide > Setup") prepended so
chunks stay self-describing.
"""

from __future__ import annotations

from typing import Any

from langchain_text_splitters import MarkdownHeaderTextSplitter, RecursiveCharacterTextSplitter
from pydantic import BaseModel, ConfigDict, Field, model_validator

# "" last so text without any separator is still cut to size
DEFAULT_SEPARATORS: tuple[str, ...] = ("\n\n", "\n", ". ", "! ", "? ", "; ", ", ", " ", "")

HEADERS_TO_SPLIT_ON: list[tuple[str, str]] = [("#" * level, f"h{level}") for level in range(1, 7)]

# MarkdownHeaderTextSplitter joins the paragraphs of a section with this
_SECTION_LINE_JOIN = "  \n"


class ChunkConfig(BaseModel):
    """Chunk size and overlap in characters, plus preferred break separators."""

    model_config = ConfigDict(frozen=True)

    chunk_size: int = Field(default=1000, ge=1)
    chunk_overlap: int = Field(default=200, ge=0)
    separators: tuple[str, ...] = DEFAULT_SEPARATORS

    @model_validator(mode="after")
    def _overlap_below_size(self) -> "ChunkConfig":
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        return self


class TextChunk(BaseModel):
    """A chunk of text before embedding.

    Attributes:
        content: Trimmed chunk text.
        position: Ordinal of the chunk in its document.
        start_index: Offset of the chunk in the text it was cut from.
        end_index: End offset (exclusive) of the chunk.
        metadata: Extra data, e.g. the markdown header trail.
    """

    content: str
    position: int
    start_index: int
    end_index: int
    metadata: dict[str, Any] = Field(default_factory=dict)


class MarkdownSection(BaseModel):
    headers: list[str] = Field(default_factory=list)
    content: str


def _splitter(config: ChunkConfig) -> RecursiveCharacterTextSplitter:
    return RecursiveCharacterTextSplitter(
        chunk_size=config.chunk_size,
        chunk_overlap=config.chunk_overlap,
        separators=list(config.separators),
        # Separators stay on the end of the piece they close ("Done. ")
        keep_separator="end",
        add_start_index=True,
    )


def chunk_text(text: str, config: ChunkConfig | None = None) -> list[TextChunk]:
    """Split text into overlapping chunks."""
    config = config or ChunkConfig()

    if not text or not text.strip():
        return []

    normalized = text.replace("\r\n", "\n").strip()
    length = len(normalized)

    if length <= config.chunk_size:
        return [TextChunk(content=normalized, position=0, start_index=0, end_index=length)]

    documents = _splitter(config).create_documents([normalized])
    return [
        TextChunk(
            content=doc.page_content,
            position=position,
            start_index=doc.metadata["start_index"],
            end_index=doc.metadata["start_index"] + len(doc.page_content),
        )
        for position, doc in enumerate(documents)
    ]


def split_by_headers(markdown: str) -> list[MarkdownSection]:
    """Split markdown into sections, tracking the header trail of each."""
    splitter = MarkdownHeaderTextSplitter(headers_to_split_on=HEADERS_TO_SPLIT_ON)
    sections: list[MarkdownSection] = []

    for doc in splitter.split_text(markdown):
        body = doc.page_content.replace(_SECTION_LINE_JOIN, "\n\n").strip()
        if not body:
            continue
        headers = [doc.metadata[name] for _, name in HEADERS_TO_SPLIT_ON if name in doc.metadata]
        sections.append(MarkdownSection(headers=headers, content=body))

    if not sections and markdown.strip():
        sections.append(MarkdownSection(content=markdown.strip()))

    return sections


def chunk_markdown(markdown: str, config: ChunkConfig | None = None) -> list[TextChunk]:
    """Chunk markdown section by section, prefixing each with its header trail.

    Offsets of markdown chunks are relative to their prefixed section text.
    """
    config = config or ChunkConfig()
    chunks: list[TextChunk] = []

    for section in split_by_headers(markdown.replace("\r\n", "\n")):
        header_context = " > ".join(section.headers)
        text = f"{header_context}\n\n{section.content}" if header_context else section.content

        for chunk in chunk_text(text, config):
            chunks.append(
                chunk.model_copy(
                    update={"position": len(chunks), "metadata": {"headers": section.headers}}
                )
            )

    return chunks


def merge_small_chunks(chunks: list[TextChunk], min_chunk_size: int = 200) -> list[TextChunk]:
    """Fold chunks shorter than min_chunk_size into the chunk that follows."""
    merged: list[TextChunk] = []
    current: TextChunk | None = None

    for chunk in chunks:
        if current is None:
            current = chunk.model_copy()
        elif len(current.content) < min_chunk_size:
            current = current.model_copy(
                update={
                    "content": f"{current.content}\n\n{chunk.content}",
                    "end_index": chunk.end_index,
                }
            )
        else:
            merged.append(current.model_copy(update={"position": len(merged)}))
            current = chunk.model_copy()

    if current is not None:
        merged.append(current.model_copy(update={"position": len(merged)}))

    return merged
