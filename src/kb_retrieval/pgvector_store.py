"""PostgreSQL + pgvector implementation of KnowledgeStore.

Reads the tables owned by the dashboard's persistence layer:

    knowledge_bases(id, tenant_id, name, is_active, deleted_at,
                    embedding_model, chunk_size, chunk_overlap)
    knowledge_documents(id, knowledge_base_id, title, content, content_type,
                        status, deleted_at)
    knowledge_chunks(id, document_id, position, content, token_count,
                     embedding vector, page_number, metadata jsonb)

When a query vector is supplied, candidates are prefiltered with the pgvector
cosine-distance operator (<=>) and the ANN index; the ranker then rescores
them exactly. Without one, every chunk of the base is returned.
"""

from __future__ import annotations

import json
import uuid
from typing import Any, Sequence

import structlog
from sqlalchemy import bindparam, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from src.kb_retrieval.models import (
    DocumentStatus,
    KnowledgeBase,
    KnowledgeChunk,
    KnowledgeDocument,
)

logger = structlog.get_logger(__name__)

# Used as the ANN prefilter size when the caller gives no limit
DEFAULT_ANN_LIMIT = 200

_KNOWLEDGE_BASE_COLUMNS = """
    kb.id, kb.tenant_id, kb.name, kb.is_active, kb.deleted_at,
    kb.embedding_model, kb.chunk_size, kb.chunk_overlap,
    (
        SELECT count(*) FROM knowledge_documents d
        WHERE d.knowledge_base_id = kb.id
          AND d.status = 'COMPLETED'
          AND d.deleted_at IS NULL
    ) AS completed_document_count
"""

_CHUNK_COLUMNS = """
    c.id, c.document_id, d.knowledge_base_id, c.position, c.content,
    c.token_count, c.embedding::text AS embedding, c.page_number,
    c.metadata, d.title AS source_title
"""


def to_vector_literal(vector: Sequence[float]) -> str:
    """Render a vector in pgvector's text input format."""
    return "[" + ",".join(str(float(v)) for v in vector) + "]"


def parse_vector_literal(value: str | None) -> list[float] | None:
    if not value:
        return None
    return [float(v) for v in value.strip("[]").split(",") if v]


def _row_to_chunk(row: Any) -> KnowledgeChunk:
    metadata = row["metadata"]
    if isinstance(metadata, str):
        metadata = json.loads(metadata)
    return KnowledgeChunk(
        id=str(row["id"]),
        document_id=str(row["document_id"]),
        knowledge_base_id=str(row["knowledge_base_id"]),
        position=row["position"],
        content=row["content"],
        token_count=row["token_count"] or 0,
        embedding=parse_vector_literal(row["embedding"]),
        source_title=row["source_title"],
        page_number=row["page_number"],
        metadata=metadata or {},
    )


def _row_to_knowledge_base(row: Any) -> KnowledgeBase:
    return KnowledgeBase(
        id=str(row["id"]),
        tenant_id=str(row["tenant_id"]),
        name=row["name"],
        is_active=row["is_active"],
        deleted_at=row["deleted_at"],
        embedding_model=row["embedding_model"],
        chunk_size=row["chunk_size"],
        chunk_overlap=row["chunk_overlap"],
        completed_document_count=row["completed_document_count"],
    )


def _row_to_document(row: Any) -> KnowledgeDocument:
    return KnowledgeDocument(
        id=str(row["id"]),
        knowledge_base_id=str(row["knowledge_base_id"]),
        title=row["title"],
        content=row["content"] or "",
        content_type=row["content_type"],
        status=DocumentStatus(row["status"]),
        deleted_at=row["deleted_at"],
    )


class PgVectorKnowledgeStore:
    """KnowledgeStore backed by PostgreSQL with the pgvector extension.

    Args:
        database_url: SQLAlchemy asyncpg DSN.
        engine: Pre-built engine (takes precedence over database_url).
    """

    def __init__(
        self,
        database_url: str | None = None,
        engine: AsyncEngine | None = None,
        pool_size: int = 10,
        max_overflow: int = 20,
    ) -> None:
        if engine is None:
            if not database_url:
                raise ValueError("database_url or engine is required")
            engine = create_async_engine(database_url, pool_size=pool_size, max_overflow=max_overflow)
        self._engine = engine
        self._session_factory = async_sessionmaker(
            self._engine, class_=AsyncSession, expire_on_commit=False
        )

    async def dispose(self) -> None:
        await self._engine.dispose()

    async def _fetch(self, sql: Any, params: dict[str, Any]) -> list[Any]:
        async with self._session_factory() as session:
            result = await session.execute(sql, params)
            return list(result.mappings().all())

    # ── Knowledge bases ─────────────────────────────────────────────────────

    async def list_active_knowledge_bases(self, tenant_id: str) -> list[KnowledgeBase]:
        sql = text(f"""
            SELECT {_KNOWLEDGE_BASE_COLUMNS}
            FROM knowledge_bases kb
            WHERE kb.tenant_id = :tenant_id
              AND kb.is_active
              AND kb.deleted_at IS NULL
              AND EXISTS (
                  SELECT 1 FROM knowledge_documents d
                  WHERE d.knowledge_base_id = kb.id
                    AND d.status = 'COMPLETED'
                    AND d.deleted_at IS NULL
              )
            ORDER BY kb.name
        """)
        rows = await self._fetch(sql, {"tenant_id": tenant_id})
        return [_row_to_knowledge_base(row) for row in rows]

    async def get_knowledge_bases(self, knowledge_base_ids: Sequence[str]) -> list[KnowledgeBase]:
        if not knowledge_base_ids:
            return []
        sql = text(f"""
            SELECT {_KNOWLEDGE_BASE_COLUMNS}
            FROM knowledge_bases kb
            WHERE kb.id IN :ids
        """).bindparams(bindparam("ids", expanding=True))
        rows = await self._fetch(sql, {"ids": list(knowledge_base_ids)})
        return [_row_to_knowledge_base(row) for row in rows]

    # ── Chunks ──────────────────────────────────────────────────────────────

    async def get_candidate_chunks(
        self,
        knowledge_base_id: str,
        query_vector: Sequence[float] | None = None,
        limit: int | None = None,
    ) -> list[KnowledgeChunk]:
        params: dict[str, Any] = {"knowledge_base_id": knowledge_base_id}
        base = f"""
            SELECT {_CHUNK_COLUMNS}
            FROM knowledge_chunks c
            JOIN knowledge_documents d ON d.id = c.document_id
            WHERE d.knowledge_base_id = :knowledge_base_id
              AND d.status = 'COMPLETED'
              AND d.deleted_at IS NULL
              AND c.embedding IS NOT NULL
        """
        if query_vector is not None:
            params["embedding"] = to_vector_literal(query_vector)
            params["limit"] = limit or DEFAULT_ANN_LIMIT
            sql = text(base + " ORDER BY c.embedding <=> CAST(:embedding AS vector) LIMIT :limit")
        elif limit:
            params["limit"] = limit
            sql = text(base + " ORDER BY c.document_id, c.position LIMIT :limit")
        else:
            sql = text(base + " ORDER BY c.document_id, c.position")

        rows = await self._fetch(sql, params)
        logger.debug(
            "pgvector.candidates_fetched",
            knowledge_base_id=knowledge_base_id,
            count=len(rows),
            prefiltered=query_vector is not None,
        )
        return [_row_to_chunk(row) for row in rows]

    async def get_document_chunks(self, document_id: str) -> list[KnowledgeChunk]:
        sql = text(f"""
            SELECT {_CHUNK_COLUMNS}
            FROM knowledge_chunks c
            JOIN knowledge_documents d ON d.id = c.document_id
            WHERE c.document_id = :document_id
            ORDER BY c.position
        """)
        rows = await self._fetch(sql, {"document_id": document_id})
        return [_row_to_chunk(row) for row in rows]

    async def replace_document_chunks(
        self, document_id: str, chunks: Sequence[KnowledgeChunk]
    ) -> None:
        insert = text("""
            INSERT INTO knowledge_chunks
                (id, document_id, position, content, token_count, embedding, page_number, metadata)
            VALUES
                (:id, :document_id, :position, :content, :token_count,
                 CAST(:embedding AS vector), :page_number, CAST(:metadata AS jsonb))
        """)
        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(
                    text("DELETE FROM knowledge_chunks WHERE document_id = :document_id"),
                    {"document_id": document_id},
                )
                if chunks:
                    await session.execute(
                        insert,
                        [
                            {
                                "id": chunk.id or str(uuid.uuid4()),
                                "document_id": document_id,
                                "position": chunk.position,
                                "content": chunk.content,
                                "token_count": chunk.token_count,
                                "embedding": to_vector_literal(chunk.embedding) if chunk.embedding else None,
                                "page_number": chunk.page_number,
                                "metadata": json.dumps(chunk.metadata),
                            }
                            for chunk in chunks
                        ],
                    )
        logger.info("pgvector.chunks_replaced", document_id=document_id, count=len(chunks))

    # ── Documents ───────────────────────────────────────────────────────────

    async def get_document(self, document_id: str) -> KnowledgeDocument | None:
        sql = text("""
            SELECT id, knowledge_base_id, title, content, content_type, status, deleted_at
            FROM knowledge_documents
            WHERE id = :document_id
        """)
        rows = await self._fetch(sql, {"document_id": document_id})
        return _row_to_document(rows[0]) if rows else None

    async def list_documents(self, knowledge_base_id: str) -> list[KnowledgeDocument]:
        sql = text("""
            SELECT id, knowledge_base_id, title, content, content_type, status, deleted_at
            FROM knowledge_documents
            WHERE knowledge_base_id = :knowledge_base_id
              AND deleted_at IS NULL
            ORDER BY title
        """)
        rows = await self._fetch(sql, {"knowledge_base_id": knowledge_base_id})
        return [_row_to_document(row) for row in rows]

    async def set_document_status(self, document_id: str, status: DocumentStatus) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(
                    text("UPDATE knowledge_documents SET status = :status WHERE id = :document_id"),
                    {"status": status.value, "document_id": document_id},
                )
