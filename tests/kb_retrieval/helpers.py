"""Test doubles and builders shared by the retrieval engine tests."""

from __future__ import annotations

from typing import Sequence

from src.kb_retrieval.config import EmbeddingConfig
from src.kb_retrieval.models import (
    DocumentStatus,
    EmbeddingResult,
    KnowledgeBase,
    KnowledgeChunk,
    KnowledgeDocument,
)
from src.kb_retrieval.store import InMemoryKnowledgeStore

TENANT = "tenant-a"


class FakeEmbedder:
    """Returns fixed vectors; can fail per model with a queue of errors.

    Attributes:
        vectors: text -> vector. Unknown texts get default_vector.
        errors: model -> list of exceptions raised (one per call) before succeeding.
            A model mapped to a single exception (not a list) always fails.
        calls: (text, model) for every embed() call.
    """

    def __init__(
        self,
        vectors: dict[str, list[float]] | None = None,
        default_vector: Sequence[float] = (1.0, 0.0, 0.0),
        errors: dict[str, object] | None = None,
    ) -> None:
        self.vectors = vectors or {}
        self.default_vector = list(default_vector)
        self.errors = errors or {}
        self.calls: list[tuple[str, str]] = []
        self.batch_calls: list[list[str]] = []

    def _maybe_fail(self, model: str) -> None:
        error = self.errors.get(model)
        if isinstance(error, list):
            if error:
                raise error.pop(0)
        elif error is not None:
            raise error

    async def embed(self, text: str, config: EmbeddingConfig) -> EmbeddingResult:
        self.calls.append((text, config.model))
        self._maybe_fail(config.model)
        return EmbeddingResult(
            embedding=self.vectors.get(text, self.default_vector),
            token_count=len(text.split()),
            model=config.model,
        )

    async def embed_batch(
        self, texts: Sequence[str], config: EmbeddingConfig
    ) -> list[EmbeddingResult]:
        self.batch_calls.append(list(texts))
        self._maybe_fail(config.model)
        return [
            EmbeddingResult(
                embedding=self.vectors.get(t, self.default_vector),
                token_count=2,
                model=config.model,
            )
            for t in texts
        ]


def add_base(
    store: InMemoryKnowledgeStore,
    kb_id: str,
    tenant_id: str = TENANT,
    embedding_model: str = "text-embedding-3-small",
    **kwargs,
) -> KnowledgeBase:
    return store.add_knowledge_base(
        KnowledgeBase(id=kb_id, tenant_id=tenant_id, name=kb_id, embedding_model=embedding_model, **kwargs)
    )


def add_document_with_chunks(
    store: InMemoryKnowledgeStore,
    kb_id: str,
    doc_id: str,
    chunks: Sequence[tuple[str, list[float] | None]],
    title: str | None = None,
    status: DocumentStatus = DocumentStatus.COMPLETED,
) -> KnowledgeDocument:
    """Add a document whose chunks are (content, embedding) pairs in position order."""
    document = KnowledgeDocument(
        id=doc_id,
        knowledge_base_id=kb_id,
        title=title or doc_id,
        content="\n\n".join(c for c, _ in chunks),
        status=status,
    )
    return store.add_document(
        document,
        [
            KnowledgeChunk(
                id=f"{doc_id}-{i}",
                document_id=doc_id,
                knowledge_base_id=kb_id,
                position=i,
                content=content,
                embedding=embedding,
                source_title=document.title,
            )
            for i, (content, embedding) in enumerate(chunks)
        ],
    )
