"""Document preparation for retrieval: chunking and batch embedding.

Components:
- chunk_text / chunk_markdown / merge_small_chunks: character-window chunking
- DocumentProcessor: chunk -> embed -> store for one document or a whole base
"""

from src.kb_retrieval.ingestion.chunker import (
    ChunkConfig,
    TextChunk,
    chunk_markdown,
    chunk_text,
    merge_small_chunks,
)
from src.kb_retrieval.ingestion.processor import DocumentProcessor, ProcessResult, ReprocessResult

__all__ = [
    "ChunkConfig",
    "DocumentProcessor",
    "ProcessResult",
    "ReprocessResult",
    "TextChunk",
    "chunk_markdown",
    "chunk_text",
    "merge_small_chunks",
]
