# Shared fixtures: fake clock, scripted embedding generators, in-memory store
import os
import sys

import numpy as np
import pytest

PROJECT_ROOT = os.path.abspath(os.path.dirname(__file__))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from budget_guard import BudgetGuard  # noqa: E402
from embedding_acquirer import EmbeddingAcquirer  # noqa: E402
from embedding_cache import EmbeddingCache  # noqa: E402
from embedding_generator import EmbeddingGenerator  # noqa: E402
from error_handler import ErrorHandler  # noqa: E402
from vector_store import InMemoryVectorStore  # noqa: E402


class FakeClock:
    """Manually advanced wall clock (epoch seconds)."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeGenerator(EmbeddingGenerator):
    """Generator returning scripted vectors and recording every call."""

    name = "fake"

    def __init__(self, vectors=None, dimension: int = 4, error: Exception = None, configured: bool = True):
        self.vectors = {k: np.asarray(v, dtype=float) for k, v in (vectors or {}).items()}
        self.dimension = dimension
        self.error = error
        self.configured = configured
        self.calls = []

    @property
    def is_configured(self) -> bool:
        return self.configured

    def generate(self, text: str) -> np.ndarray:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        if text in self.vectors:
            return self.vectors[text]
        # Stable per-word vector so unknown words still get something usable
        rng = np.random.default_rng(sum(ord(c) for c in text))
        return rng.uniform(0.1, 1.0, self.dimension)


# Vectors chosen so that king - man lands closest to queen
ROYAL_VECTORS = {
    "king": [1.0, 1.0, 0.0, 0.1],
    "man": [0.0, 1.0, 0.0, 0.1],
    "queen": [1.0, 0.0, 1.0, 0.0],
    "princess": [0.6, 0.0, 1.0, 0.3],
    "lady": [0.2, 0.0, 1.0, 0.0],
    "woman": [0.0, 0.0, 1.0, 0.1],
}


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    """Keep real credentials and config overrides out of the tests."""
    monkeypatch.delenv("HUGGINGFACE_API_KEY", raising=False)
    for key in list(os.environ):
        if key.startswith("CONFIG_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_store():
    return InMemoryVectorStore()


@pytest.fixture
def royal_generator():
    return FakeGenerator(ROYAL_VECTORS, dimension=4)


@pytest.fixture
def make_acquirer(clock):
    """Factory building an acquirer around fake collaborators."""
    created = []

    def _make(generator=None, store=None, *, dimension=4, synthetic_fallback=True,
              max_requests=100, daily_budget=10.0, timeout=2.0, max_retries=0, cache=None):
        acquirer = EmbeddingAcquirer(
            cache or EmbeddingCache(ttl_seconds=3600, clock=clock),
            BudgetGuard(max_requests=max_requests, window_seconds=60, daily_budget=daily_budget, clock=clock),
            generator,
            store,
            dimension=dimension,
            timeout=timeout,
            synthetic_fallback=synthetic_fallback,
            error_handler=ErrorHandler(max_retries=max_retries, retry_interval=0.0, sleep=lambda s: None),
        )
        created.append(acquirer)
        return acquirer

    yield _make
    for acquirer in created:
        acquirer.close()
