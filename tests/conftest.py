"""Pytest configuration and fixtures."""

import pytest

from review_search.caching import CacheManager
from review_search.config import SemanticSearchConfig
from review_search.semantic.embeddings import ModelManager
from review_search.semantic.storage import resolve_project_scope

from fakes import FakeBackend, FakeStore


@pytest.fixture
def project_dir(tmp_path):
    """Empty project directory nested deep enough to pass the path guard."""
    path = tmp_path / "workspace" / "proj"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def project_scope(project_dir):
    return resolve_project_scope(project_dir)


@pytest.fixture
def semantic_settings():
    """Semantic settings with no retry backoff."""
    return SemanticSearchConfig(model_retry_backoff_seconds=0.0)


@pytest.fixture
def cache_manager():
    return CacheManager(max_cache_size=100, max_embedding_cache_size=100)


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def model_manager(fake_backend, cache_manager, semantic_settings):
    return ModelManager(backend=fake_backend, cache_manager=cache_manager, settings=semantic_settings)


@pytest.fixture
def fake_store():
    return FakeStore()
