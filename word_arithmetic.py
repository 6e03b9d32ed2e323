"""
Word arithmetic: resolve two words, combine their vectors and rank the
vocabulary against the result.

``WordArithmeticService`` is the entry point used by the CLI; ``create_service``
wires the whole object graph from a ConfigManager.
"""
import time
import uuid
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from budget_guard import BudgetGuard
from config_manager import ConfigManager
from embedding_acquirer import AcquiredEmbedding, EmbeddingAcquirer
from embedding_cache import DEFAULT_TTL_SECONDS, EmbeddingCache
from embedding_generator import DEFAULT_DIMENSION, create_generator
from error_handler import ErrorHandler
from exceptions import InvalidInput
from language_utils import LanguageDetector
from logger_config import LogContext, get_logger, log_performance
from similarity_ranker import RankedResult, SimilarityRanker
from vector_operations import SUPPORTED_OPERATIONS, perform_word_arithmetic
from vector_store import create_store
from vocabulary_service import EmbeddedVocabulary, VocabularyService

logger = get_logger("wordmath.service", "system")

# Upper bound on words accepted by a single embed request
MAX_EMBED_WORDS = 10


class RequestState(Enum):
    START = "start"
    RESOLVING_WORD1 = "resolving_word1"
    RESOLVING_WORD2 = "resolving_word2"
    COMBINING = "combining"
    RANKING = "ranking"
    DONE = "done"
    FAILED = "failed"


# Each state may only advance to the next one, or fail
_NEXT_STATE = {
    RequestState.START: RequestState.RESOLVING_WORD1,
    RequestState.RESOLVING_WORD1: RequestState.RESOLVING_WORD2,
    RequestState.RESOLVING_WORD2: RequestState.COMBINING,
    RequestState.COMBINING: RequestState.RANKING,
    RequestState.RANKING: RequestState.DONE,
}


class RequestLifecycle:
    """Tracks one request through its linear sequence of states."""

    def __init__(self, request_id: str):
        self.request_id = request_id
        self.state = RequestState.START
        self.failure_reason: Optional[str] = None
        self.history: List[RequestState] = [RequestState.START]

    def can_transition(self, target: RequestState) -> bool:
        if target is RequestState.FAILED:
            return self.state not in (RequestState.DONE, RequestState.FAILED)
        return _NEXT_STATE.get(self.state) is target

    def advance(self, target: RequestState) -> None:
        if not self.can_transition(target):
            raise RuntimeError(f"Invalid request state transition {self.state.value} -> {target.value}")
        logger.debug(f"[{self.request_id}] {self.state.value} -> {target.value}")
        self.state = target
        self.history.append(target)

    def fail(self, reason: str) -> None:
        self.advance(RequestState.FAILED)
        self.failure_reason = reason
        logger.warning(f"[{self.request_id}] request failed: {reason}")


@dataclass
class OperationResult:
    word1: str
    word2: str
    operation: str
    results: List[RankedResult]
    combined_vector_preview: List[float]
    degraded: bool
    word1_language: str
    word2_language: str
    synthetic_words: List[str] = field(default_factory=list)
    degraded_vocabulary_words: List[str] = field(default_factory=list)
    sources: Dict[str, str] = field(default_factory=dict)
    processing_time: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "word1": self.word1,
            "word2": self.word2,
            "operation": self.operation,
            "results": [r.to_dict() for r in self.results],
            "combined_vector_preview": list(self.combined_vector_preview),
            "degraded": self.degraded,
            "word1_language": self.word1_language,
            "word2_language": self.word2_language,
            "synthetic_words": list(self.synthetic_words),
            "degraded_vocabulary_words": list(self.degraded_vocabulary_words),
            "sources": dict(self.sources),
            "processing_time": self.processing_time,
        }


class WordArithmeticService:
    """
    Computes ``word1 (+|-) word2`` and returns the closest vocabulary words.

    Both input words are resolved concurrently; the vocabulary supplier only
    needs a ``get_entries()`` method returning VocabularyEntry objects and may
    list words served without a real embedding in ``degraded_words``.
    """

    def __init__(self,
                 acquirer: EmbeddingAcquirer,
                 vocabulary,
                 ranker: Optional[SimilarityRanker] = None,
                 language_detector: Optional[LanguageDetector] = None,
                 max_word_length: int = 100,
                 preview_dims: int = 5):
        """
        Initialize the service.

        Args:
            acquirer: Resolves words to vectors
            vocabulary: Candidate supplier with ``get_entries()``
            ranker: Similarity ranker (default settings if None)
            language_detector: Language hint for the input words
            max_word_length: Longest accepted input word
            preview_dims: Components of the combined vector included in results
        """
        self.acquirer = acquirer
        self.vocabulary = vocabulary
        self.ranker = ranker or SimilarityRanker()
        self.language_detector = language_detector or LanguageDetector()
        self.max_word_length = max_word_length
        self.preview_dims = preview_dims

        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="word-resolve")
        self._closed = False
        self._close_lock = threading.Lock()

    def _clean_word(self, word, label: str) -> str:
        if not isinstance(word, str):
            raise InvalidInput(f"{label} must be a string")
        cleaned = word.strip().lower()
        if not cleaned:
            raise InvalidInput(f"{label} must not be empty")
        if len(cleaned) > self.max_word_length:
            raise InvalidInput(f"{label} exceeds {self.max_word_length} characters")
        return cleaned

    @log_performance()
    def compute_operation(self,
                          word1: str,
                          word2: str,
                          op: str,
                          top_k: Optional[int] = None,
                          deadline: Optional[float] = None) -> OperationResult:
        """
        Combine two words and rank the vocabulary against the result.

        Args:
            word1: First operand
            word2: Second operand
            op: "+" or "-"
            top_k: Number of results (ranker default if None)
            deadline: Optional ``time.monotonic()`` cut-off for the request

        Returns:
            OperationResult; ``degraded`` is set when either word needed a
            synthetic vector or the vocabulary has words without a real
            embedding

        Raises:
            InvalidInput: empty or over-long word, or unsupported operation
            BudgetExceeded, AcquisitionFailed, RequestCancelled: resolution failed
        """
        if self._closed:
            raise RuntimeError("Service has been closed")

        clean1 = self._clean_word(word1, "word1")
        clean2 = self._clean_word(word2, "word2")
        if op not in SUPPORTED_OPERATIONS:
            raise InvalidInput(f"Unsupported operation {op!r}; expected one of {', '.join(SUPPORTED_OPERATIONS)}")

        start_time = time.time()
        lifecycle = RequestLifecycle(uuid.uuid4().hex[:12])
        label = f"{clean1} {op} {clean2}"

        with LogContext(request_id=lifecycle.request_id):
            logger.info(f"Processing: {label}")
            try:
                lifecycle.advance(RequestState.RESOLVING_WORD1)
                future1 = self._executor.submit(self.acquirer.resolve, clean1, deadline)
                future2 = self._executor.submit(self.acquirer.resolve, clean2, deadline)
                embedding1: AcquiredEmbedding = future1.result()

                lifecycle.advance(RequestState.RESOLVING_WORD2)
                embedding2: AcquiredEmbedding = future2.result()

                lifecycle.advance(RequestState.COMBINING)
                combined = perform_word_arithmetic(embedding1.vector, embedding2.vector, op)

                lifecycle.advance(RequestState.RANKING)
                candidates = self.vocabulary.get_entries()
                degraded_vocabulary = list(getattr(self.vocabulary, "degraded_words", []))
                results = self.ranker.rank(combined, candidates,
                                           top_k=top_k, exclude_words=[clean1, clean2])

                lifecycle.advance(RequestState.DONE)
            except Exception as e:
                lifecycle.fail(f"{type(e).__name__}: {e}")
                raise

        synthetic_words = [e.text for e in (embedding1, embedding2) if e.synthetic]
        if synthetic_words:
            logger.warning(f"Degraded result for {label}: synthetic vectors for {', '.join(synthetic_words)}")
        if degraded_vocabulary:
            logger.warning(f"Degraded result for {label}: {len(degraded_vocabulary)} vocabulary words "
                           f"without a real embedding")

        return OperationResult(
            word1=clean1,
            word2=clean2,
            operation=label,
            results=results,
            combined_vector_preview=[float(x) for x in combined[:self.preview_dims]],
            degraded=bool(synthetic_words or degraded_vocabulary),
            # Lower-casing turns "İ" into "i" plus a combining dot
            word1_language=self.language_detector.detect(word1.strip()),
            word2_language=self.language_detector.detect(word2.strip()),
            synthetic_words=synthetic_words,
            degraded_vocabulary_words=degraded_vocabulary,
            sources={clean1: embedding1.source.value, clean2: embedding2.source.value},
            processing_time=time.time() - start_time,
        )

    def embed_words(self, words: Sequence[str], deadline: Optional[float] = None) -> Dict[str, Any]:
        """
        Resolve a handful of words and summarise their embeddings.

        Args:
            words: Between 1 and MAX_EMBED_WORDS words
            deadline: Optional ``time.monotonic()`` cut-off

        Returns:
            Dictionary with per-word language, dimension, source and preview,
            the degraded words and current cache statistics
        """
        if not words:
            raise InvalidInput("At least one word is required")
        if len(words) > MAX_EMBED_WORDS:
            raise InvalidInput(f"At most {MAX_EMBED_WORDS} words per request")
        cleaned = [self._clean_word(w, f"word {i + 1}") for i, w in enumerate(words)]

        start_time = time.time()
        batch = self.acquirer.resolve_all(cleaned, deadline=deadline)

        data = {}
        for raw, word, vector, embedding in zip(words, cleaned, batch.vectors, batch.embeddings):
            data[word] = {
                "language": self.language_detector.detect(raw.strip()),
                "dimension": int(len(vector)),
                "source": embedding.source.value if embedding is not None else None,
                "preview": [float(x) for x in vector[:self.preview_dims]],
            }

        return {
            "embeddings": data,
            "degraded_words": [cleaned[i] for i in batch.degraded_indices],
            "synthetic_words": [e.text for e in batch.embeddings if e is not None and e.synthetic],
            "processing_time": time.time() - start_time,
            "cache": self.get_cache_stats(),
        }

    def get_cache_stats(self) -> Dict[str, Any]:
        stats = self.acquirer.cache.stats()
        return {"size": stats["size"], "hit_rate": stats["hit_rate"]}

    def health(self) -> Dict[str, Any]:
        generator = self.acquirer.generator
        return {
            "status": "ok" if not self._closed else "closed",
            "provider": generator.name,
            "provider_configured": generator.is_configured,
            "tiers": self.acquirer.tier_names,
            "supported_operations": list(SUPPORTED_OPERATIONS),
            "cache": self.get_cache_stats(),
            "budget": self.acquirer.budget_guard.snapshot(),
            "errors": self.acquirer.error_summary(),
        }

    def close(self) -> None:
        """Shut down worker threads and drop cached vectors."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        self._executor.shutdown(wait=True)
        self.acquirer.close()
        self.acquirer.cache.clear()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def create_service(config: Optional[ConfigManager] = None, show_progress: bool = False) -> WordArithmeticService:
    """
    Build a WordArithmeticService from configuration.

    Args:
        config: ConfigManager; defaults are used when None
        show_progress: Show a progress bar while the vocabulary is embedded

    Returns:
        Ready-to-use service
    """
    config = config or ConfigManager.in_memory()

    cache = EmbeddingCache(
        ttl_seconds=config.get("cache.ttl_seconds", DEFAULT_TTL_SECONDS),
        max_size=config.get("cache.max_size"),
    )
    budget_guard = BudgetGuard(
        max_requests=config.get("budget.max_requests", 60),
        window_seconds=config.get("budget.window_seconds", 60),
        daily_budget=config.get("budget.daily_budget", 1.0),
    )
    error_handler = ErrorHandler(
        max_retries=config.get("embedding.max_retries", 0),
        retry_interval=config.get("embedding.retry_interval", 0.5),
    )
    acquirer = EmbeddingAcquirer(
        cache,
        budget_guard,
        create_generator(config),
        create_store(config),
        dimension=config.get("embedding.dimension", DEFAULT_DIMENSION),
        timeout=config.get("embedding.timeout", 10.0),
        synthetic_fallback=config.get("embedding.synthetic_fallback", True),
        cost_per_1k_tokens=config.get("budget.cost_per_1k_tokens", 0.0001),
        error_handler=error_handler,
    )

    vocabulary_file = config.get("vocabulary.file")
    service = VocabularyService.from_file(vocabulary_file) if vocabulary_file else VocabularyService()
    vocabulary = EmbeddedVocabulary(
        service,
        acquirer,
        min_frequency=config.get("vocabulary.min_frequency", 0.0),
        show_progress=show_progress,
    )

    ranker = SimilarityRanker(
        default_top_k=config.get("ranking.top_k", 3),
        min_similarity=config.get("ranking.min_similarity"),
    )

    logger.info(f"Service ready: provider={acquirer.generator.name}, tiers={acquirer.tier_names}")
    return WordArithmeticService(
        acquirer,
        vocabulary,
        ranker,
        LanguageDetector(),
        max_word_length=config.get("request.max_word_length", 100),
        preview_dims=config.get("request.preview_dims", 5),
    )
