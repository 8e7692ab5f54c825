"""Document processor: chunk a stored document and embed its chunks.

Orchestrates the preparation of searchable chunks:

    store.get_document() -> chunk_markdown() / chunk_text()
    -> EmbeddingClient.embed_batch() (in batches) -> store.replace_document_chunks()

The document moves PENDING -> PROCESSING -> COMPLETED, or FAILED when any
step raises; failures are reported on the ProcessResult, not raised.
"""

from __future__ import annotations

import structlog
from pydantic import BaseModel, Field

from src.kb_retrieval.config import KnowledgeBaseConfig, resolve_embedding_config
from src.kb_retrieval.embeddings import EmbeddingClient, estimate_token_count
from src.kb_retrieval.ingestion.chunker import ChunkConfig, chunk_markdown, chunk_text
from src.kb_retrieval.models import DocumentStatus, KnowledgeChunk, KnowledgeDocument
from src.kb_retrieval.store import KnowledgeStore

logger = structlog.get_logger(__name__)

MARKDOWN_CONTENT_TYPES = frozenset({"text/markdown", "text/x-markdown"})


class ProcessResult(BaseModel):
    """Outcome of processing one document.

    Attributes:
        document_id: The processed document.
        chunks_created: Number of embedded chunks stored.
        total_tokens: Provider-reported tokens spent on embeddings.
        error: Failure message, if processing failed.
    """

    document_id: str
    chunks_created: int = 0
    total_tokens: int = 0
    error: str | None = None


class ReprocessResult(BaseModel):
    """Outcome of reprocessing every document of a knowledge base."""

    knowledge_base_id: str
    processed: int = 0
    failed: int = 0
    errors: dict[str, str] = Field(default_factory=dict)


class DocumentProcessor:
    """Turns stored documents into embedded chunks.

    Args:
        store: KnowledgeStore holding documents and receiving chunks.
        embedding_client: Client used for batch embeddings.
        config: Engine configuration (chunk defaults, batch size, provider).
    """

    def __init__(
        self,
        store: KnowledgeStore,
        embedding_client: EmbeddingClient | None = None,
        config: KnowledgeBaseConfig | None = None,
    ) -> None:
        self._store = store
        self._embedder = embedding_client or EmbeddingClient()
        self._config = config or KnowledgeBaseConfig()

    async def process_document(
        self,
        document_id: str,
        chunk_config: ChunkConfig | None = None,
        embedding_model: str | None = None,
    ) -> ProcessResult:
        """Chunk, embed and store a single document.

        Args:
            document_id: Document to process.
            chunk_config: Override for chunk size/overlap; defaults to the
                owning knowledge base's settings.
            embedding_model: Override for the knowledge base's model.
        """
        result = ProcessResult(document_id=document_id)
        log = logger.bind(document_id=document_id)

        document = await self._store.get_document(document_id)
        if document is None:
            result.error = "Document not found"
            return result

        try:
            await self._store.set_document_status(document_id, DocumentStatus.PROCESSING)

            knowledge_bases = await self._store.get_knowledge_bases([document.knowledge_base_id])
            knowledge_base = knowledge_bases[0] if knowledge_bases else None
            if chunk_config is None:
                chunk_config = ChunkConfig(
                    chunk_size=knowledge_base.chunk_size if knowledge_base else self._config.chunk_size,
                    chunk_overlap=(
                        knowledge_base.chunk_overlap if knowledge_base else self._config.chunk_overlap
                    ),
                )
            model = embedding_model or (knowledge_base.embedding_model if knowledge_base else None)
            embedding_config = resolve_embedding_config(self._config, {"model": model})

            text_chunks = self._chunk(document, chunk_config)
            if not text_chunks:
                raise ValueError("No chunks generated from document")

            chunks: list[KnowledgeChunk] = []
            batch_size = self._config.embedding_batch_size
            for start in range(0, len(text_chunks), batch_size):
                batch = text_chunks[start : start + batch_size]
                embeddings = await self._embedder.embed_batch(
                    [c.content for c in batch], embedding_config
                )
                for text_chunk, embedded in zip(batch, embeddings, strict=True):
                    result.total_tokens += embedded.token_count
                    chunks.append(
                        KnowledgeChunk(
                            document_id=document.id,
                            knowledge_base_id=document.knowledge_base_id,
                            position=text_chunk.position,
                            content=text_chunk.content,
                            token_count=estimate_token_count(text_chunk.content),
                            embedding=embedded.embedding,
                            source_title=document.title,
                            metadata=text_chunk.metadata,
                        )
                    )

            await self._store.replace_document_chunks(document_id, chunks)
            await self._store.set_document_status(document_id, DocumentStatus.COMPLETED)
            result.chunks_created = len(chunks)

            log.info(
                "processor.document_completed",
                chunks_created=result.chunks_created,
                total_tokens=result.total_tokens,
            )

        except Exception as e:
            log.error("processor.document_failed", error=str(e), exc_info=True)
            await self._store.set_document_status(document_id, DocumentStatus.FAILED)
            result.error = str(e)

        return result

    async def reprocess_knowledge_base(
        self,
        knowledge_base_id: str,
        chunk_config: ChunkConfig | None = None,
    ) -> ReprocessResult:
        """Re-chunk and re-embed every non-deleted document of a knowledge base.

        Documents are processed one at a time; a failing document does not
        stop the rest.
        """
        summary = ReprocessResult(knowledge_base_id=knowledge_base_id)
        for document in await self._store.list_documents(knowledge_base_id):
            result = await self.process_document(document.id, chunk_config=chunk_config)
            if result.error:
                summary.failed += 1
                summary.errors[document.id] = result.error
            else:
                summary.processed += 1

        logger.info(
            "processor.knowledge_base_reprocessed",
            knowledge_base_id=knowledge_base_id,
            processed=summary.processed,
            failed=summary.failed,
        )
        return summary

    @staticmethod
    def _chunk(document: KnowledgeDocument, config: ChunkConfig):
        if document.content_type in MARKDOWN_CONTENT_TYPES:
            return chunk_markdown(document.content, config)
        return chunk_text(document.content, config)
