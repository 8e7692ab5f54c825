"""Chunk store interface and an in-memory implementation.

The engine never owns knowledge base storage. It talks to the persistence
collaborator through KnowledgeStore, injected per KnowledgeRetriever /
DocumentProcessor instance; there is no module-level registry.
"""

from __future__ import annotations

from typing import Protocol, Sequence

from src.kb_retrieval.models import (
    DocumentStatus,
    KnowledgeBase,
    KnowledgeChunk,
    KnowledgeDocument,
)
from src.kb_retrieval.ranking import cosine_similarity


class KnowledgeStore(Protocol):
    """Minimal persistence interface consumed by the engine."""

    async def list_active_knowledge_bases(self, tenant_id: str) -> list[KnowledgeBase]:
        """Active, non-deleted bases of the tenant with >=1 COMPLETED document."""
        ...

    async def get_knowledge_bases(self, knowledge_base_ids: Sequence[str]) -> list[KnowledgeBase]:
        """Look up bases by id; unknown ids are omitted."""
        ...

    async def get_candidate_chunks(
        self,
        knowledge_base_id: str,
        query_vector: Sequence[float] | None = None,
        limit: int | None = None,
    ) -> list[KnowledgeChunk]:
        """Chunks of COMPLETED documents; may be an ANN-prefiltered superset."""
        ...

    async def get_document(self, document_id: str) -> KnowledgeDocument | None: ...

    async def list_documents(self, knowledge_base_id: str) -> list[KnowledgeDocument]:
        """Non-deleted documents of a base, any status."""
        ...

    async def get_document_chunks(self, document_id: str) -> list[KnowledgeChunk]: ...

    async def replace_document_chunks(
        self, document_id: str, chunks: Sequence[KnowledgeChunk]
    ) -> None: ...

    async def set_document_status(self, document_id: str, status: DocumentStatus) -> None: ...


class InMemoryKnowledgeStore:
    """Dict-backed KnowledgeStore for local development, scripts and tests.

    State lives on the instance; create one per test or per process.
    """

    def __init__(self) -> None:
        self._knowledge_bases: dict[str, KnowledgeBase] = {}
        self._documents: dict[str, KnowledgeDocument] = {}
        self._chunks: dict[str, list[KnowledgeChunk]] = {}

    # ── Writes ──────────────────────────────────────────────────────────────

    def add_knowledge_base(self, knowledge_base: KnowledgeBase) -> KnowledgeBase:
        self._knowledge_bases[knowledge_base.id] = knowledge_base
        return knowledge_base

    def add_document(
        self,
        document: KnowledgeDocument,
        chunks: Sequence[KnowledgeChunk] | None = None,
    ) -> KnowledgeDocument:
        if document.knowledge_base_id not in self._knowledge_bases:
            raise KeyError(f"Unknown knowledge base: {document.knowledge_base_id}")
        self._documents[document.id] = document
        self._chunks[document.id] = list(chunks or [])
        return document

    async def replace_document_chunks(
        self, document_id: str, chunks: Sequence[KnowledgeChunk]
    ) -> None:
        if document_id not in self._documents:
            raise KeyError(f"Unknown document: {document_id}")
        self._chunks[document_id] = sorted(chunks, key=lambda c: c.position)

    async def set_document_status(self, document_id: str, status: DocumentStatus) -> None:
        document = self._documents[document_id]
        self._documents[document_id] = document.model_copy(update={"status": status})

    # ── Reads ───────────────────────────────────────────────────────────────

    def _completed_count(self, knowledge_base_id: str) -> int:
        return sum(
            1
            for doc in self._documents.values()
            if doc.knowledge_base_id == knowledge_base_id and doc.is_searchable
        )

    def _with_counts(self, knowledge_base: KnowledgeBase) -> KnowledgeBase:
        return knowledge_base.model_copy(
            update={"completed_document_count": self._completed_count(knowledge_base.id)}
        )

    async def list_active_knowledge_bases(self, tenant_id: str) -> list[KnowledgeBase]:
        bases = [
            self._with_counts(kb)
            for kb in self._knowledge_bases.values()
            if kb.tenant_id == tenant_id
        ]
        return [kb for kb in bases if kb.is_searchable]

    async def get_knowledge_bases(self, knowledge_base_ids: Sequence[str]) -> list[KnowledgeBase]:
        return [
            self._with_counts(self._knowledge_bases[kb_id])
            for kb_id in knowledge_base_ids
            if kb_id in self._knowledge_bases
        ]

    async def get_candidate_chunks(
        self,
        knowledge_base_id: str,
        query_vector: Sequence[float] | None = None,
        limit: int | None = None,
    ) -> list[KnowledgeChunk]:
        # Exact search: every chunk is a candidate unless a limit is given
        chunks = [
            chunk
            for doc in self._documents.values()
            if doc.knowledge_base_id == knowledge_base_id and doc.is_searchable
            for chunk in self._chunks.get(doc.id, [])
        ]
        if not limit:
            return chunks
        if query_vector is not None:
            # Nearest first, mirroring the ANN prefilter; unembedded chunks last
            chunks.sort(
                key=lambda c: -cosine_similarity(query_vector, c.embedding)
                if c.embedding
                else float("inf")
            )
        return chunks[:limit]

    async def get_document(self, document_id: str) -> KnowledgeDocument | None:
        return self._documents.get(document_id)

    async def list_documents(self, knowledge_base_id: str) -> list[KnowledgeDocument]:
        return [
            doc
            for doc in self._documents.values()
            if doc.knowledge_base_id == knowledge_base_id and doc.deleted_at is None
        ]

    async def get_document_chunks(self, document_id: str) -> list[KnowledgeChunk]:
        return list(self._chunks.get(document_id, []))
