"""Retrieval orchestrator: tenant query in, bounded prompt context out.

Flow for get_knowledge_context():

    [gate] -> resolve knowledge bases -> embed query (once per embedding
    model) -> per-base candidate fetch + rank (concurrent) -> global merge
    and re-rank -> global top_k -> build_context()

Query embeddings are retried with bounded exponential backoff (tenacity) on
retryable provider errors. What happens when a single knowledge base fails
is governed by FanOutPolicy; bases that degrade to zero results are reported
in KnowledgeContextResult.failed_knowledge_base_ids.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Sequence

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from src.kb_retrieval.config import FanOutPolicy, KnowledgeBaseConfig, resolve_embedding_config
from src.kb_retrieval.context import build_context
from src.kb_retrieval.embeddings import EmbeddingClient
from src.kb_retrieval.exceptions import (
    ConfigurationError,
    DimensionMismatchError,
    KnowledgeBaseError,
    is_retryable,
)
from src.kb_retrieval.gate import should_search_knowledge_base
from src.kb_retrieval.models import (
    ContextOptions,
    KnowledgeBase,
    KnowledgeContextOptions,
    KnowledgeContextResult,
    RankOptions,
    RelatedDocument,
    SearchResult,
)
from src.kb_retrieval.ranking import cosine_similarity, rank, sort_results
from src.kb_retrieval.store import KnowledgeStore

logger = structlog.get_logger(__name__)

# Errors that indicate a bug or misconfiguration; never degraded away
_FATAL_ERRORS = (ConfigurationError, DimensionMismatchError)


def _log_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "retrieval.embedding_retry",
        attempt=retry_state.attempt_number,
        wait_s=round(retry_state.next_action.sleep, 2) if retry_state.next_action else None,
        error=str(error),
    )


class KnowledgeRetriever:
    """Searches a tenant's knowledge bases and assembles prompt context.

    Holds no per-request state, so one instance can serve concurrent calls.

    Args:
        store: Persistence collaborator implementing KnowledgeStore.
        embedding_client: Client for query embeddings (default: new EmbeddingClient).
        config: Engine configuration (default: loaded from the environment).
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

    @property
    def config(self) -> KnowledgeBaseConfig:
        return self._config

    @staticmethod
    def should_search(query: str) -> bool:
        """Query gate, exposed for callers that want to skip retrieval early."""
        return should_search_knowledge_base(query)

    # ── Query embedding ─────────────────────────────────────────────────────

    async def embed_query(self, query: str, model: str | None = None) -> list[float]:
        """Embed a query with bounded retries on retryable provider errors.

        Raises:
            ConfigurationError: No credential or invalid model settings.
            ProviderError / ProviderUnavailable: After the last attempt.
        """
        embedding_config = resolve_embedding_config(self._config, {"model": model})

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._config.embedding_max_retries),
            wait=wait_exponential(
                multiplier=1,
                min=self._config.embedding_retry_min_wait,
                max=self._config.embedding_retry_max_wait,
            ),
            retry=retry_if_exception(is_retryable),
            before_sleep=_log_retry,
            reraise=True,
        ):
            with attempt:
                result = await self._embedder.embed(query, embedding_config)
        return result.embedding

    async def _embed_per_model(
        self, query: str, knowledge_bases: Sequence[KnowledgeBase]
    ) -> tuple[dict[str, list[float]], dict[str, KnowledgeBaseError]]:
        """Embed the query once per distinct embedding model.

        Returns:
            (vectors by model, retryable errors by model). Fatal errors raise.
        """
        models = sorted({kb.embedding_model for kb in knowledge_bases})
        outcomes = await asyncio.gather(
            *(self.embed_query(query, model) for model in models),
            return_exceptions=True,
        )

        vectors: dict[str, list[float]] = {}
        failures: dict[str, KnowledgeBaseError] = {}
        for model, outcome in zip(models, outcomes):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, _FATAL_ERRORS) or not isinstance(outcome, KnowledgeBaseError):
                    raise outcome
                failures[model] = outcome
            else:
                vectors[model] = outcome

        if failures and (not vectors or self._config.fanout_policy == FanOutPolicy.abort):
            # Nothing to rank without the query embedding
            raise next(iter(failures.values()))
        return vectors, failures

    # ── Per-base search ─────────────────────────────────────────────────────

    async def _search_base(
        self,
        knowledge_base_id: str,
        query_vector: list[float],
        options: RankOptions,
    ) -> list[SearchResult] | None:
        """Rank one base's candidates; None means the base failed and degraded."""
        try:
            candidates = await self._store.get_candidate_chunks(
                knowledge_base_id,
                query_vector=query_vector,
                limit=self._config.candidate_limit,
            )
            return rank(query_vector, candidates, options)
        except _FATAL_ERRORS:
            raise
        except Exception:
            if self._config.fanout_policy == FanOutPolicy.abort:
                raise
            logger.warning(
                "retrieval.knowledge_base_failed",
                knowledge_base_id=knowledge_base_id,
                exc_info=True,
            )
            return None

    async def search_knowledge_bases(
        self,
        knowledge_bases: Sequence[KnowledgeBase],
        query: str,
        options: RankOptions | None = None,
    ) -> tuple[list[SearchResult], list[str]]:
        """Fan out over several bases, merge and globally re-rank.

        Returns:
            (top_k merged results, ids of bases that degraded to zero results).
        """
        options = options or RankOptions(
            top_k=self._config.default_top_k,
            threshold=self._config.default_threshold,
        )
        if not knowledge_bases:
            return [], []

        vectors, embed_failures = await self._embed_per_model(query, knowledge_bases)

        failed: list[str] = [
            kb.id for kb in knowledge_bases if kb.embedding_model in embed_failures
        ]
        for model, error in embed_failures.items():
            logger.warning(
                "retrieval.embedding_failed_for_model",
                model=model,
                error=str(error),
                knowledge_base_ids=[kb.id for kb in knowledge_bases if kb.embedding_model == model],
            )

        searchable = [kb for kb in knowledge_bases if kb.embedding_model in vectors]
        per_base = await asyncio.gather(
            *(self._search_base(kb.id, vectors[kb.embedding_model], options) for kb in searchable)
        )

        merged: list[SearchResult] = []
        for kb, results in zip(searchable, per_base):
            if results is None:
                failed.append(kb.id)
            else:
                merged.extend(results)

        return sort_results(merged)[: options.top_k], failed

    async def search_knowledge_base(
        self,
        knowledge_base_id: str,
        query: str,
        options: RankOptions | None = None,
    ) -> list[SearchResult]:
        """Search a single knowledge base."""
        knowledge_bases = await self._resolve_explicit([knowledge_base_id], tenant_id="")
        results, _ = await self.search_knowledge_bases(knowledge_bases, query, options)
        return results

    # ── Knowledge base resolution ───────────────────────────────────────────

    async def _resolve_explicit(
        self, knowledge_base_ids: Sequence[str], tenant_id: str
    ) -> list[KnowledgeBase]:
        """Explicit ids win; ids unknown to the store use the default model."""
        known = {kb.id: kb for kb in await self._store.get_knowledge_bases(knowledge_base_ids)}
        return [
            known.get(kb_id)
            or KnowledgeBase(id=kb_id, tenant_id=tenant_id, embedding_model=self._config.embedding_model)
            for kb_id in dict.fromkeys(knowledge_base_ids)
        ]

    async def resolve_knowledge_bases(
        self,
        tenant_id: str,
        knowledge_base_ids: Sequence[str] | None = None,
    ) -> list[KnowledgeBase]:
        if knowledge_base_ids:
            return await self._resolve_explicit(knowledge_base_ids, tenant_id)
        return await self._store.list_active_knowledge_bases(tenant_id)

    # ── Public entry point ──────────────────────────────────────────────────

    async def get_knowledge_context(
        self, options: KnowledgeContextOptions
    ) -> KnowledgeContextResult:
        """Get relevant context from the tenant's knowledge bases for a query.

        Returns an empty result (has_context=False) when the gate rejects the
        query, no knowledge base resolves, or nothing clears the threshold.

        Raises:
            ConfigurationError, DimensionMismatchError: Always.
            ProviderError, ProviderUnavailable: When the query embedding fails
                for every resolved base, or any failure under FanOutPolicy.abort.
        """
        log = logger.bind(tenant_id=options.tenant_id)

        if not options.skip_gate and not self.should_search(options.query):
            log.info("retrieval.query_gated", query_length=len(options.query))
            return KnowledgeContextResult.empty()

        knowledge_bases = await self.resolve_knowledge_bases(
            options.tenant_id, options.knowledge_base_ids
        )
        knowledge_base_ids = [kb.id for kb in knowledge_bases]
        if not knowledge_bases:
            log.info("retrieval.no_knowledge_bases")
            return KnowledgeContextResult.empty()

        rank_options = RankOptions(
            top_k=options.top_k or self._config.default_top_k,
            threshold=(
                options.threshold if options.threshold is not None else self._config.default_threshold
            ),
        )
        results, failed = await self.search_knowledge_bases(
            knowledge_bases, options.query, rank_options
        )

        context = build_context(
            results,
            ContextOptions(
                max_length=options.max_context_length or self._config.default_max_context_length,
                include_source=options.include_source,
                format=options.format,
            ),
        )

        log.info(
            "retrieval.context_built",
            knowledge_base_count=len(knowledge_base_ids),
            failed_count=len(failed),
            result_count=len(results),
            context_length=len(context),
            top_score=results[0].score if results else None,
        )
        return KnowledgeContextResult(
            context=context,
            results=results,
            knowledge_base_ids=knowledge_base_ids,
            has_context=len(context) > 0,
            failed_knowledge_base_ids=failed,
        )

    # ── Related documents ───────────────────────────────────────────────────

    async def get_related_documents(
        self,
        document_id: str,
        top_k: int = 5,
        threshold: float = 0.7,
    ) -> list[RelatedDocument]:
        """Find documents in the same knowledge base similar to a document.

        Each other document scores the mean cosine similarity over every
        (source chunk, other chunk) pair; no provider call is made.
        """
        options = RankOptions(top_k=top_k, threshold=threshold)
        source_chunks = [c for c in await self._store.get_document_chunks(document_id) if c.embedding]
        if not source_chunks:
            return []

        knowledge_base_id = source_chunks[0].knowledge_base_id
        others = [
            c
            for c in await self._store.get_candidate_chunks(knowledge_base_id)
            if c.document_id != document_id and c.embedding
        ]

        scores: dict[str, list[float]] = defaultdict(list)
        for source in source_chunks:
            for other in others:
                scores[other.document_id].append(cosine_similarity(source.embedding, other.embedding))

        means = [(doc_id, sum(s) / len(s)) for doc_id, s in scores.items()]
        means = [(doc_id, score) for doc_id, score in means if score >= options.threshold]
        means.sort(key=lambda pair: pair[1], reverse=True)

        related: list[RelatedDocument] = []
        for doc_id, score in means[: options.top_k]:
            document = await self._store.get_document(doc_id)
            title = document.title if document else doc_id
            related.append(RelatedDocument(document_id=doc_id, title=title, score=score))
        return related
