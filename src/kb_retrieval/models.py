"""Pydantic models for the retrieval engine.

KnowledgeBase, KnowledgeDocument and KnowledgeChunk mirror rows owned by the
persistence collaborator. The engine only reads them (and the processor
writes chunks through the store interface). SearchResult, EmbeddingResult and
KnowledgeContextResult are ephemeral values computed per call and never
persisted.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from src.kb_retrieval.config import DEFAULT_EMBEDDING_MODEL

ContextFormat = Literal["plain", "markdown"]
SimilarityMetric = Literal["cosine", "euclidean"]


# ── Persisted entities (read through the store) ─────────────────────────────


class DocumentStatus(str, Enum):
    """Ingestion lifecycle of a knowledge document."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class KnowledgeBase(BaseModel):
    """A tenant-owned collection of documents searched as one unit.

    Soft-deleted via deleted_at; never hard-removed while chunks reference it.

    Attributes:
        id: Knowledge base identifier.
        tenant_id: Owning tenant.
        name: Display name.
        is_active: Administrative on/off switch.
        deleted_at: Soft-delete timestamp (None = live).
        embedding_model: Model every chunk of this base was embedded with.
        chunk_size: Chunk size used when processing its documents.
        chunk_overlap: Chunk overlap used when processing its documents.
        completed_document_count: Number of live COMPLETED documents.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    tenant_id: str
    name: str = ""
    is_active: bool = True
    deleted_at: datetime | None = None
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    chunk_size: int = 1000
    chunk_overlap: int = 200
    completed_document_count: int = 0

    @property
    def is_searchable(self) -> bool:
        """Active, not deleted, and holding at least one COMPLETED document."""
        return self.is_active and self.deleted_at is None and self.completed_document_count > 0


class KnowledgeDocument(BaseModel):
    """A source document belonging to a knowledge base."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    knowledge_base_id: str
    title: str
    content: str = ""
    content_type: str = "text/plain"
    status: DocumentStatus = DocumentStatus.PENDING
    deleted_at: datetime | None = None

    @property
    def is_searchable(self) -> bool:
        return self.status == DocumentStatus.COMPLETED and self.deleted_at is None


class KnowledgeChunk(BaseModel):
    """A bounded passage of a document with its precomputed embedding.

    Attributes:
        id: Chunk identifier.
        document_id: Owning document.
        knowledge_base_id: Knowledge base of the owning document.
        position: Ordinal of the chunk within its document.
        content: Raw chunk text.
        token_count: Token estimate for the content.
        embedding: Vector (same length as every chunk of the same model).
        source_title: Document title used for attribution.
        page_number: Optional page for attribution.
        metadata: Free-form chunk metadata (e.g. markdown header trail).
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    document_id: str
    knowledge_base_id: str
    position: int = Field(default=0, ge=0)
    content: str
    token_count: int = 0
    embedding: list[float] | None = None
    source_title: str | None = None
    page_number: int | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


# ── Per-call values ─────────────────────────────────────────────────────────


class EmbeddingResult(BaseModel):
    """One vector returned by the embedding client."""

    model_config = ConfigDict(frozen=True)

    embedding: list[float]
    token_count: int
    model: str


class SearchResult(BaseModel):
    """Read-only projection of a scored chunk."""

    model_config = ConfigDict(frozen=True)

    chunk_id: str
    document_id: str
    knowledge_base_id: str
    content: str
    score: float
    source: str | None = None
    position: int = 0
    metadata: dict[str, Any] = Field(default_factory=dict)


class RankOptions(BaseModel):
    """Ranking knobs shared by single-base and multi-base search."""

    model_config = ConfigDict(frozen=True)

    top_k: int = Field(default=5, ge=1, le=20)
    threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    metric: SimilarityMetric = "cosine"


class ContextOptions(BaseModel):
    """How ranked results are packed into the prompt context."""

    model_config = ConfigDict(frozen=True)

    max_length: int = Field(default=4000, ge=100, le=16000)
    include_source: bool = True
    format: ContextFormat = "markdown"


class KnowledgeContextOptions(BaseModel):
    """Input of KnowledgeRetriever.get_knowledge_context().

    Unset numeric knobs fall back to the engine's KnowledgeBaseConfig.

    Attributes:
        tenant_id: Tenant whose knowledge bases are searched.
        query: Free-text user query.
        workspace_ids: Accepted for API compatibility; workspace scoping is
            resolved by the store, not the engine.
        knowledge_base_ids: Explicit bases to search (overrides resolution).
        top_k: Global result cap after merging all bases.
        threshold: Minimum similarity score.
        max_context_length: Character budget of the context string.
        include_source: Prefix snippets with their source title.
        format: "markdown" or "plain".
        skip_gate: When False, the query gate runs first and may short-circuit.
    """

    tenant_id: str = Field(min_length=1)
    query: str = Field(min_length=1)
    workspace_ids: list[str] | None = None
    knowledge_base_ids: list[str] | None = None
    top_k: int | None = Field(default=None, ge=1, le=20)
    threshold: float | None = Field(default=None, ge=0.0, le=1.0)
    max_context_length: int | None = Field(default=None, ge=100, le=16000)
    include_source: bool = True
    format: ContextFormat = "markdown"
    skip_gate: bool = True


class KnowledgeContextResult(BaseModel):
    """Context ready for prompt injection, plus provenance.

    Attributes:
        context: Formatted context string (may be empty).
        results: Ranked results the context was built from.
        knowledge_base_ids: Knowledge bases that were searched.
        has_context: True iff context is non-empty.
        failed_knowledge_base_ids: Bases that degraded to zero results.
    """

    model_config = ConfigDict(frozen=True)

    context: str = ""
    results: list[SearchResult] = Field(default_factory=list)
    knowledge_base_ids: list[str] = Field(default_factory=list)
    has_context: bool = False
    failed_knowledge_base_ids: list[str] = Field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        """Whether some knowledge bases were skipped because they failed."""
        return bool(self.failed_knowledge_base_ids)

    @classmethod
    def empty(cls, knowledge_base_ids: list[str] | None = None) -> "KnowledgeContextResult":
        return cls(knowledge_base_ids=list(knowledge_base_ids or []))


class RelatedDocument(BaseModel):
    """A document similar to a given document, by mean chunk similarity."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    title: str
    score: float
