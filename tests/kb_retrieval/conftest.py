"""Shared fixtures for retrieval engine tests.

Provides:
- A KnowledgeBaseConfig isolated from the environment (3-dim vectors, no backoff)
- An empty InMemoryKnowledgeStore
- A FakeEmbedder returning [1, 0, 0] for every text
"""

from __future__ import annotations

import pytest

from src.kb_retrieval.config import KnowledgeBaseConfig
from src.kb_retrieval.store import InMemoryKnowledgeStore
from tests.kb_retrieval.helpers import FakeEmbedder


@pytest.fixture
def config() -> KnowledgeBaseConfig:
    """Config with a dummy key, 3-dim vectors and zero retry backoff."""
    return KnowledgeBaseConfig(
        _env_file=None,
        openai_api_key="test-key",
        embedding_dimensions=3,
        embedding_max_retries=2,
        embedding_retry_min_wait=0,
        embedding_retry_max_wait=0,
    )


@pytest.fixture
def store() -> InMemoryKnowledgeStore:
    return InMemoryKnowledgeStore()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()
