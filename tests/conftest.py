"""Shared pytest fixtures for embedding store tests.

Provides deterministic fake embedding models and a store backed by a
temporary SQLite file, so no test loads real model weights or touches the
network.
"""

from typing import List, Optional

import pytest

from embeddings.models import EmbeddingModel, ModelRegistry
from vector_store.sqlite_store import SQLiteCollectionStore


# =============================================================================
# PYTEST MARKERS REGISTRATION
# =============================================================================


def pytest_configure(config):
    """Register custom pytest markers."""
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "slow: mark test as slow-running")
    config.addinivalue_line("markers", "unit: mark test as unit test")


# =============================================================================
# FAKE EMBEDDING MODELS
# =============================================================================


def _bucket(word: str, dims: int) -> int:
    return sum(ord(ch) for ch in word) % dims


class FakeEmbeddingModel(EmbeddingModel):
    """Deterministic bag-of-words model.

    Each word adds 1.0 to the bucket chosen by the sum of its code points, so
    texts sharing words point in similar directions. Every call to
    ``embed_batch`` is recorded for assertions.
    """

    def __init__(
        self,
        model_id: str = "fake-words",
        dims: int = 16,
        batch_size: Optional[int] = None,
    ) -> None:
        self.model_id = model_id
        self._dimensions = dims
        self.batch_size = batch_size
        self.calls: List[List] = []

    @property
    def embedded_count(self) -> int:
        return sum(len(call) for call in self.calls)

    def embed_batch(self, items):
        self.calls.append(list(items))
        vectors = []
        for item in items:
            text = item.decode("utf-8", "replace") if isinstance(item, bytes) else item
            vector = [0.0] * self._dimensions
            for word in text.lower().split():
                vector[_bucket(word, self._dimensions)] += 1.0
            vectors.append(vector)
        return vectors


class FailingEmbeddingModel(FakeEmbeddingModel):
    """Fake model that raises on its ``fail_on_call``-th batch (1-based)."""

    def __init__(self, fail_on_call: int, **kwargs) -> None:
        super().__init__(**kwargs)
        self.fail_on_call = fail_on_call

    def embed_batch(self, items):
        if len(self.calls) + 1 == self.fail_on_call:
            self.calls.append(list(items))
            raise RuntimeError("model exploded")
        return super().embed_batch(items)


class BinaryEmbeddingModel(FakeEmbeddingModel):
    """Fake binary-only model: histogram of byte values folded into buckets."""

    supports_text = False
    supports_binary = True

    def __init__(self, **kwargs) -> None:
        kwargs.setdefault("model_id", "fake-bytes")
        super().__init__(**kwargs)

    def embed_batch(self, items):
        self.calls.append(list(items))
        vectors = []
        for item in items:
            vector = [0.0] * self._dimensions
            for byte in bytes(item):
                vector[byte % self._dimensions] += 1.0
            vectors.append(vector)
        return vectors


class FakeClock:
    """Monotonic clock advancing one second per reading."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        self.now += 1.0
        return self.now


# =============================================================================
# PYTEST FIXTURES
# =============================================================================


@pytest.fixture
def fake_model():
    """Fixture providing a FakeEmbeddingModel instance."""
    return FakeEmbeddingModel()


@pytest.fixture
def binary_model():
    """Fixture providing a BinaryEmbeddingModel instance."""
    return BinaryEmbeddingModel()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path, clock):
    """Fixture providing a store on a temporary database file."""
    return SQLiteCollectionStore(
        tmp_path / "embeddings.db", registry=ModelRegistry(), clock=clock
    )


@pytest.fixture
def collection(store, fake_model):
    """Fixture providing a fresh collection bound to ``fake_model``."""
    return store.get_or_create("phrases", fake_model)


@pytest.fixture
def model_factory():
    """Fixture providing the FakeEmbeddingModel class for custom instances."""
    return FakeEmbeddingModel


@pytest.fixture
def failing_model_factory():
    """Fixture providing the FailingEmbeddingModel class."""
    return FailingEmbeddingModel
