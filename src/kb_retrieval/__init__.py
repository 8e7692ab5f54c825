"""Knowledge base semantic retrieval for tenant chatbots.

Turns documents into embedded chunks and, at conversation time, turns a
user query into a bounded, ranked context string for prompt injection.

Entry points for the prompt-building service:
- KnowledgeRetriever.get_knowledge_context()
- build_prompt_with_context()
- should_search_knowledge_base()
"""

from src.kb_retrieval.config import (
    EmbeddingConfig,
    FanOutPolicy,
    KnowledgeBaseConfig,
    resolve_embedding_config,
)
from src.kb_retrieval.context import build_context, build_prompt_with_context
from src.kb_retrieval.embeddings import EmbeddingClient, estimate_token_count
from src.kb_retrieval.exceptions import (
    ConfigurationError,
    DimensionMismatchError,
    KnowledgeBaseError,
    ProviderError,
    ProviderUnavailable,
)
from src.kb_retrieval.gate import should_search_knowledge_base
from src.kb_retrieval.models import (
    ContextOptions,
    DocumentStatus,
    EmbeddingResult,
    KnowledgeBase,
    KnowledgeChunk,
    KnowledgeContextOptions,
    KnowledgeContextResult,
    KnowledgeDocument,
    RankOptions,
    RelatedDocument,
    SearchResult,
)
from src.kb_retrieval.ranking import cosine_similarity, euclidean_distance, rank
from src.kb_retrieval.retrieval import KnowledgeRetriever
from src.kb_retrieval.store import InMemoryKnowledgeStore, KnowledgeStore

__all__ = [
    "ConfigurationError",
    "ContextOptions",
    "DimensionMismatchError",
    "DocumentStatus",
    "EmbeddingClient",
    "EmbeddingConfig",
    "EmbeddingResult",
    "FanOutPolicy",
    "InMemoryKnowledgeStore",
    "KnowledgeBase",
    "KnowledgeBaseConfig",
    "KnowledgeBaseError",
    "KnowledgeChunk",
    "KnowledgeContextOptions",
    "KnowledgeContextResult",
    "KnowledgeDocument",
    "KnowledgeRetriever",
    "KnowledgeStore",
    "ProviderError",
    "ProviderUnavailable",
    "RankOptions",
    "RelatedDocument",
    "SearchResult",
    "build_context",
    "build_prompt_with_context",
    "cosine_similarity",
    "estimate_token_count",
    "euclidean_distance",
    "rank",
    "resolve_embedding_config",
    "should_search_knowledge_base",
]
