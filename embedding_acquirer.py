"""
Resolves text to an embedding vector through an ordered fallback chain:

1. in-memory cache
2. durable vector store
3. external generator (gated by the budget guard)
4. deterministic synthetic vector

Each tier is a plain method returning a ``TierResult``; ``resolve`` walks the
list in order and stops at the first hit. Tier failures are recorded through
the error handler and never escape on their own.
"""
import time
import threading
from collections import Counter
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

from budget_guard import BudgetGuard, Decision
from embedding_cache import EmbeddingCache
from embedding_generator import (
    DEFAULT_DIMENSION,
    EmbeddingGenerator,
    NullGenerator,
    count_tokens,
    synthetic_embedding,
)
from error_handler import ErrorHandler
from exceptions import AcquisitionFailed, BudgetExceeded, RequestCancelled
from logger_config import get_logger
from vector_store import VectorStore

logger = get_logger("wordmath.embeddings.acquirer", "embeddings")


class EmbeddingSource(Enum):
    """Which tier produced a vector."""
    CACHE = "cache"
    STORE = "store"
    GENERATED = "generated"
    SYNTHETIC = "synthetic"


@dataclass(frozen=True)
class AcquiredEmbedding:
    text: str
    vector: np.ndarray
    source: EmbeddingSource

    @property
    def synthetic(self) -> bool:
        """True when the vector is a placeholder rather than a real embedding."""
        return self.source is EmbeddingSource.SYNTHETIC


@dataclass(frozen=True)
class TierResult:
    vector: Optional[np.ndarray] = None
    source: Optional[EmbeddingSource] = None
    reason: str = ""
    budget_decision: Optional[Decision] = None

    @classmethod
    def hit(cls, vector: np.ndarray, source: EmbeddingSource) -> "TierResult":
        return cls(vector=vector, source=source)

    @classmethod
    def next_tier(cls, reason: str, budget_decision: Optional[Decision] = None) -> "TierResult":
        return cls(reason=reason, budget_decision=budget_decision)

    @property
    def found(self) -> bool:
        return self.vector is not None


@dataclass
class BatchResult:
    vectors: List[np.ndarray]
    embeddings: List[Optional[AcquiredEmbedding]]
    degraded_indices: List[int] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return bool(self.degraded_indices)


class EmbeddingAcquirer:
    """
    Turns words into vectors while keeping external calls within budget.
    """

    def __init__(self,
                 cache: EmbeddingCache,
                 budget_guard: BudgetGuard,
                 generator: Optional[EmbeddingGenerator] = None,
                 store: Optional[VectorStore] = None,
                 *,
                 dimension: int = DEFAULT_DIMENSION,
                 timeout: float = 10.0,
                 synthetic_fallback: bool = True,
                 cost_per_1k_tokens: float = 0.0001,
                 error_handler: Optional[ErrorHandler] = None,
                 max_workers: int = 4):
        """
        Initialize the acquirer.

        Args:
            cache: Shared in-memory cache
            budget_guard: Rate/spend limiter consulted before every generation
            generator: External embedding provider (generation skipped if None)
            store: Durable vector store (skipped if None)
            dimension: Expected vector dimension
            timeout: Seconds allowed for a store lookup or generator call
            synthetic_fallback: Whether the synthetic tier is enabled
            cost_per_1k_tokens: Price used to estimate the cost of a generation
            error_handler: Records tier failures and retries generator calls
            max_workers: Threads available for bounded external calls
        """
        self.cache = cache
        self.budget_guard = budget_guard
        self.generator = generator or NullGenerator()
        self.store = store
        self.dimension = dimension
        self.timeout = timeout
        self.synthetic_fallback = synthetic_fallback
        self.cost_per_1k_tokens = cost_per_1k_tokens
        self.error_handler = error_handler or ErrorHandler()

        self._executor = ThreadPoolExecutor(max_workers=max_workers,
                                            thread_name_prefix="embedding-io")
        self._source_counts: Counter = Counter()
        self._counts_lock = threading.Lock()

        self._tiers: List[Tuple[str, Callable[[str, Optional[float]], TierResult]]] = [
            ("cache", self._from_cache),
            ("store", self._from_store),
            ("generator", self._from_generator),
        ]
        if synthetic_fallback:
            self._tiers.append(("synthetic", self._from_synthetic))

    @property
    def tier_names(self) -> List[str]:
        return [name for name, _ in self._tiers]

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def resolve(self, text: str, deadline: Optional[float] = None) -> AcquiredEmbedding:
        """
        Resolve *text* to a vector.

        Args:
            text: Word or short phrase
            deadline: Optional ``time.monotonic()`` value after which the
                request is considered cancelled

        Returns:
            AcquiredEmbedding tagged with the tier that produced it

        Raises:
            BudgetExceeded: generation was refused and no synthetic tier exists
            AcquisitionFailed: every tier failed
            RequestCancelled: the deadline passed
        """
        if not isinstance(text, str) or not text.strip():
            raise AcquisitionFailed(str(text), ["empty text"])

        reasons = []
        budget_decision = None
        for name, tier in self._tiers:
            self._check_deadline(text, deadline)
            result = tier(text, deadline)
            if result.found:
                with self._counts_lock:
                    self._source_counts[result.source.value] += 1
                logger.debug(f"Resolved {text!r} from {name}")
                return AcquiredEmbedding(text=text, vector=result.vector, source=result.source)
            reasons.append(f"{name}: {result.reason}")
            if result.budget_decision is not None:
                budget_decision = result.budget_decision

        if budget_decision is not None:
            raise BudgetExceeded(
                f"Embedding for {text!r} refused by budget guard ({budget_decision.value}) "
                f"and synthetic fallback is disabled",
                decision=budget_decision.value,
            )
        raise AcquisitionFailed(text, reasons)

    def resolve_all(self, texts: Sequence[str], deadline: Optional[float] = None) -> BatchResult:
        """
        Resolve several texts one after another, preserving input order.

        Items that cannot be resolved become zero vectors and their indices
        are listed in ``degraded_indices``; the batch itself never aborts on
        a per-item failure.
        """
        vectors: List[np.ndarray] = []
        embeddings: List[Optional[AcquiredEmbedding]] = []
        degraded: List[int] = []

        for index, text in enumerate(texts):
            try:
                embedding = self.resolve(text, deadline=deadline)
            except (AcquisitionFailed, BudgetExceeded) as e:
                logger.warning(f"Failed to get embedding for {text!r}: {e}")
                vectors.append(np.zeros(self.dimension))
                embeddings.append(None)
                degraded.append(index)
                continue
            vectors.append(embedding.vector)
            embeddings.append(embedding)

        return BatchResult(vectors=vectors, embeddings=embeddings, degraded_indices=degraded)

    def estimate_cost(self, text: str) -> float:
        return count_tokens(text) * self.cost_per_1k_tokens / 1000.0

    def stats(self) -> dict:
        with self._counts_lock:
            sources = dict(self._source_counts)
        return {
            "sources": sources,
            "cache": self.cache.stats(),
            "budget": self.budget_guard.snapshot(),
            "errors": self.error_handler.get_error_summary(),
        }

    def error_summary(self) -> dict:
        return self.error_handler.get_error_summary()

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    # ------------------------------------------------------------------
    # Tiers
    # ------------------------------------------------------------------
    def _from_cache(self, text: str, deadline: Optional[float]) -> TierResult:
        vector = self.cache.get(text)
        if vector is None:
            return TierResult.next_tier("cache miss")
        return TierResult.hit(vector, EmbeddingSource.CACHE)

    def _from_store(self, text: str, deadline: Optional[float]) -> TierResult:
        if self.store is None:
            return TierResult.next_tier("no durable store")
        try:
            vector = self._call_with_timeout(self.store.lookup, (text,), deadline)
        except Exception as e:
            self.error_handler.handle_error(e, {"tier": "store", "text": text})
            return TierResult.next_tier(f"store lookup failed: {type(e).__name__}")

        if vector is None:
            return TierResult.next_tier("not in store")
        vector, problem = self._validate(vector)
        if problem:
            logger.warning(f"Discarding stored vector for {text!r}: {problem}")
            return TierResult.next_tier(f"stored vector {problem}")

        self.cache.put(text, vector)
        return TierResult.hit(vector, EmbeddingSource.STORE)

    def _from_generator(self, text: str, deadline: Optional[float]) -> TierResult:
        if not self.generator.is_configured:
            return TierResult.next_tier(f"generator {self.generator.name!r} not configured")

        cost = self.estimate_cost(text)

        # Every attempt, retries included, is a billed provider call
        def charge_budget(attempt: int) -> None:
            decision = self.budget_guard.allow(cost)
            if decision is not Decision.PROCEED:
                raise BudgetExceeded(
                    f"Generation attempt {attempt + 1} for {text!r} refused ({decision.value})",
                    decision=decision.value,
                )

        try:
            vector = self._call_with_timeout(
                self.error_handler.retry_operation,
                (self.generator.generate, (text,), None, charge_budget),
                deadline,
            )
        except BudgetExceeded as e:
            decision = Decision(e.decision)
            return TierResult.next_tier(f"budget decision {decision.value}", budget_decision=decision)
        except Exception as e:
            self.error_handler.handle_error(e, {"tier": "generator", "text": text,
                                                "provider": self.generator.name})
            return TierResult.next_tier(f"generation failed: {type(e).__name__}")

        vector, problem = self._validate(vector)
        if problem:
            logger.warning(f"Generator returned an unusable vector for {text!r}: {problem}")
            return TierResult.next_tier(f"generated vector {problem}")

        self.cache.put(text, vector)
        if self.store is not None:
            try:
                if not self.store.store(text, vector):
                    logger.warning(f"Durable store rejected vector for {text!r}")
            except Exception as e:
                self.error_handler.handle_error(e, {"tier": "store-write", "text": text})
        return TierResult.hit(vector, EmbeddingSource.GENERATED)

    def _from_synthetic(self, text: str, deadline: Optional[float]) -> TierResult:
        logger.warning(f"Falling back to synthetic embedding for {text!r}")
        return TierResult.hit(synthetic_embedding(text.strip().lower(), self.dimension),
                              EmbeddingSource.SYNTHETIC)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _validate(self, vector) -> Tuple[Optional[np.ndarray], Optional[str]]:
        """Return the vector as a float array, or a description of what is wrong."""
        try:
            array = np.asarray(vector, dtype=np.float64).reshape(-1)
        except (TypeError, ValueError):
            return None, "is not numeric"
        if array.size == 0:
            return None, "is empty"
        if array.size != self.dimension:
            return None, f"has dimension {array.size}, expected {self.dimension}"
        if not np.all(np.isfinite(array)):
            return None, "contains non-finite values"
        if not np.any(array):
            return None, "is the zero vector"
        return array, None

    def _remaining(self, deadline: Optional[float]) -> float:
        if deadline is None:
            return self.timeout
        return max(0.0, min(self.timeout, deadline - time.monotonic()))

    def _check_deadline(self, text: str, deadline: Optional[float]) -> None:
        if deadline is not None and time.monotonic() >= deadline:
            raise RequestCancelled(f"Deadline passed while resolving {text!r}")

    def _call_with_timeout(self, func, args: tuple, deadline: Optional[float]):
        future = self._executor.submit(func, *args)
        try:
            return future.result(timeout=self._remaining(deadline))
        except FutureTimeoutError:
            future.cancel()
            raise TimeoutError(f"{getattr(func, '__name__', 'call')} timed out")
