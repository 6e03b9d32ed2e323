import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

import numpy as np

from exceptions import DimensionMismatch
from logger_config import get_logger
from vector_operations import as_vector


@dataclass(frozen=True)
class VocabularyEntry:
    """A candidate word with its precomputed vector."""
    word: str
    language: str
    vector: np.ndarray
    weight: Optional[float] = None


@dataclass(frozen=True)
class RankedResult:
    word: str
    similarity: float
    language: str

    def to_dict(self) -> Dict[str, Any]:
        return {"word": self.word, "similarity": self.similarity, "language": self.language}


class SimilarityRanker:
    """
    Exact nearest-neighbour ranking of a candidate vocabulary by cosine
    similarity.

    Scoring is a single linear scan over the candidates, which is fine for
    vocabularies of hundreds to a few thousand words. Larger vocabularies
    need an approximate index instead.
    """

    def __init__(self, default_top_k: int = 3, min_similarity: Optional[float] = None):
        """
        Initialize the ranker.

        Args:
            default_top_k: Results returned when ``rank`` gets no top_k
            min_similarity: Optional floor below which candidates are dropped
        """
        self.default_top_k = default_top_k
        self.min_similarity = min_similarity
        self.logger = get_logger("wordmath.ranking", "ranking")

        # Performance tracking
        self.calculation_times = []

    def rank(self,
             target,
             candidates: Sequence[VocabularyEntry],
             top_k: Optional[int] = None,
             exclude_words: Optional[Iterable[str]] = None,
             min_similarity: Optional[float] = None) -> List[RankedResult]:
        """
        Rank candidates by similarity to a target vector.

        Args:
            target: Result vector of the word arithmetic
            candidates: Vocabulary entries to score
            top_k: Number of results to return (defaults to ``default_top_k``)
            exclude_words: Words never returned, compared case-insensitively
            min_similarity: Overrides the ranker's similarity floor

        Returns:
            Up to top_k RankedResult sorted by descending similarity; ties keep
            the candidates' input order

        Raises:
            DimensionMismatch: a candidate vector differs in length from target.
                Excluded candidates are dropped before this check and are
                never inspected, so a stale vector on an excluded word does
                not fail the request.
        """
        start_time = time.time()

        if top_k is None:
            top_k = self.default_top_k
        if min_similarity is None:
            min_similarity = self.min_similarity
        if top_k <= 0 or not candidates:
            return []

        target_vec = as_vector(target)
        excluded = {w.strip().lower() for w in (exclude_words or [])}

        kept = [c for c in candidates if c.word.strip().lower() not in excluded]
        if not kept:
            return []

        for candidate in kept:
            if len(candidate.vector) != target_vec.shape[0]:
                raise DimensionMismatch(target_vec.shape[0], len(candidate.vector))

        similarities = self._cosine_scores(target_vec, np.vstack([as_vector(c.vector) for c in kept]))

        # Stable sort keeps original order among equal scores
        order = np.argsort(-similarities, kind="stable")

        results = []
        for idx in order:
            score = float(similarities[idx])
            if min_similarity is not None and score < min_similarity:
                continue
            candidate = kept[idx]
            results.append(RankedResult(word=candidate.word, similarity=score,
                                        language=candidate.language))
            if len(results) >= top_k:
                break

        # Track performance
        elapsed = time.time() - start_time
        self.calculation_times.append(elapsed)
        if len(self.calculation_times) > 100:
            self.calculation_times.pop(0)  # Keep only last 100 times
        avg_time = sum(self.calculation_times) / len(self.calculation_times)
        self.logger.debug(f"Ranked {len(kept)} candidates in {elapsed:.4f}s (avg: {avg_time:.4f}s)")

        return results

    @staticmethod
    def _cosine_scores(target: np.ndarray, matrix: np.ndarray) -> np.ndarray:
        """Cosine similarity of *target* against every row; zero vectors score 0."""
        target_norm = np.linalg.norm(target)
        if target_norm == 0:
            return np.zeros(matrix.shape[0])

        row_norms = np.linalg.norm(matrix, axis=1)
        dots = matrix @ target
        scores = np.zeros(matrix.shape[0])
        nonzero = row_norms > 0
        scores[nonzero] = dots[nonzero] / (row_norms[nonzero] * target_norm)
        return np.clip(scores, -1.0, 1.0)
