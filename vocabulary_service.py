"""
Vocabulary service providing candidate words for similarity search.

``VocabularyService`` holds the word list itself; the suppliers turn it into
``VocabularyEntry`` records with vectors for the ranker.
"""
import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from tqdm import tqdm

from similarity_ranker import VocabularyEntry

logger = logging.getLogger("wordmath.vocabulary")


@dataclass(frozen=True)
class VocabularyWord:
    word: str
    language: str
    frequency: Optional[float] = None  # How common the word is, 0-1
    category: Optional[str] = None     # e.g. 'noun', 'verb', 'adjective'


def _words(language: str, category: str, entries: Sequence[tuple]) -> List[VocabularyWord]:
    return [VocabularyWord(word, language, frequency, category) for word, frequency in entries]


DEFAULT_WORDS: List[VocabularyWord] = (
    # English: people and royalty
    _words("en", "noun", [
        ("queen", 0.8), ("king", 0.9), ("man", 0.95), ("woman", 0.95),
        ("prince", 0.7), ("princess", 0.7), ("lady", 0.8), ("gentleman", 0.6),
    ])
    # Cities and countries
    + _words("en", "noun", [
        ("london", 0.8), ("paris", 0.8), ("berlin", 0.7), ("madrid", 0.7),
        ("rome", 0.7), ("tokyo", 0.7), ("beijing", 0.6), ("moscow", 0.6),
        ("istanbul", 0.6), ("ankara", 0.5),
        ("france", 0.8), ("england", 0.8), ("germany", 0.8), ("spain", 0.7),
        ("italy", 0.7), ("turkey", 0.7), ("japan", 0.7), ("china", 0.8), ("russia", 0.7),
    ])
    # Emotions
    + _words("en", "adjective", [
        ("happy", 0.9), ("sad", 0.9), ("blissful", 0.5), ("euphoric", 0.4),
        ("delighted", 0.6), ("cheerful", 0.6), ("joyful", 0.6), ("optimistic", 0.5),
        ("depressed", 0.6), ("gloomy", 0.5), ("melancholy", 0.4),
    ])
    + _words("en", "noun", [
        ("joy", 0.8), ("anger", 0.7), ("love", 0.9), ("hate", 0.7),
    ])
    # Colours and objects
    + _words("en", "adjective", [
        ("red", 0.9), ("blue", 0.9), ("green", 0.9), ("yellow", 0.8),
        ("black", 0.9), ("white", 0.9), ("purple", 0.7), ("orange", 0.8),
    ])
    + _words("en", "noun", [
        ("apple", 0.8), ("banana", 0.7), ("cherry", 0.6), ("strawberry", 0.6),
        ("tomato", 0.7), ("fruit", 0.8),
    ])
    # Animals
    + _words("en", "noun", [
        ("cat", 0.8), ("dog", 0.9), ("bird", 0.8), ("fish", 0.8), ("lion", 0.7),
        ("tiger", 0.6), ("elephant", 0.6), ("mouse", 0.7), ("horse", 0.7), ("cow", 0.7),
        ("cheetah", 0.5), ("leopard", 0.4), ("panther", 0.4),
    ])
    # Technology
    + _words("en", "noun", [
        ("computer", 0.9), ("phone", 0.9), ("internet", 0.8), ("smartphone", 0.8),
        ("laptop", 0.7), ("tablet", 0.6),
    ])
    # Turkish
    + _words("tr", "noun", [
        ("kral", 0.7), ("kraliçe", 0.7), ("adam", 0.9), ("kadın", 0.9), ("sevgi", 0.8),
        ("istanbul", 0.9), ("ankara", 0.8), ("türkiye", 0.9),
    ])
    + _words("tr", "adjective", [
        ("mutlu", 0.8), ("üzgün", 0.8), ("kızgın", 0.7),
    ])
    # Abstract nouns
    + _words("en", "noun", [
        ("discovery", 0.6), ("innovation", 0.6), ("creation", 0.6), ("imagination", 0.5),
        ("wisdom", 0.6), ("knowledge", 0.7), ("understanding", 0.6), ("compassion", 0.5),
        ("courage", 0.6), ("strength", 0.7),
    ])
)


class VocabularyService:
    """Curated multilingual word list with simple filters."""

    def __init__(self, words: Optional[Iterable[VocabularyWord]] = None):
        self.words: List[VocabularyWord] = list(DEFAULT_WORDS if words is None else words)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "VocabularyService":
        """
        Load a word list from JSON.

        The file holds a list of objects with ``word`` and ``language`` and
        optional ``frequency`` and ``category`` keys.
        """
        with open(Path(path).expanduser(), 'r', encoding='utf-8') as f:
            raw = json.load(f)
        words = [
            VocabularyWord(
                word=item["word"],
                language=item.get("language", "en"),
                frequency=item.get("frequency"),
                category=item.get("category"),
            )
            for item in raw
        ]
        logger.info(f"Loaded {len(words)} vocabulary words from {path}")
        return cls(words)

    def get_candidate_words(self, exclude_words: Iterable[str] = ()) -> List[VocabularyWord]:
        """Every word except those in *exclude_words* (case-insensitive)."""
        excluded = {w.strip().lower() for w in exclude_words}
        return [w for w in self.words if w.word.lower() not in excluded]

    def get_words_by_language(self, language: str, exclude_words: Iterable[str] = ()) -> List[VocabularyWord]:
        return [w for w in self.get_candidate_words(exclude_words) if w.language == language]

    def get_words_by_category(self, category: str, exclude_words: Iterable[str] = ()) -> List[VocabularyWord]:
        return [w for w in self.get_candidate_words(exclude_words) if w.category == category]

    def get_high_frequency_words(self, min_frequency: float = 0.6,
                                 exclude_words: Iterable[str] = ()) -> List[VocabularyWord]:
        return [w for w in self.get_candidate_words(exclude_words)
                if (w.frequency or 0) >= min_frequency]


class StaticVocabulary:
    """Supplier wrapping a fixed list of entries."""

    def __init__(self, entries: Iterable[VocabularyEntry]):
        self._entries = list(entries)

    def get_entries(self) -> List[VocabularyEntry]:
        return list(self._entries)

    @property
    def degraded_words(self) -> List[str]:
        return []


class EmbeddedVocabulary:
    """
    Supplier that embeds the service's words through an acquirer.

    Only real embeddings are kept between calls. Words that came back
    synthetic, or could not be resolved at all, are resolved again on the
    next ``get_entries`` call, so a vocabulary built while the budget was
    exhausted fills in once the window has room. Synthetic vectors are still
    served in the meantime and the affected words are listed in
    ``degraded_words``. Unresolvable words are left out rather than ranked
    with a zero vector.
    """

    def __init__(self, service: VocabularyService, acquirer, min_frequency: float = 0.0,
                 show_progress: bool = False, chunk_size: int = 16):
        self.service = service
        self.acquirer = acquirer
        self.min_frequency = min_frequency
        self.show_progress = show_progress
        self.chunk_size = max(1, chunk_size)
        self._words: Optional[List[VocabularyWord]] = None
        self._resolved: Dict[Tuple[str, str], VocabularyEntry] = {}
        self._degraded_words: List[str] = []
        self._lock = threading.Lock()

    def get_entries(self) -> List[VocabularyEntry]:
        with self._lock:
            if self._words is None:
                self._words = self.service.get_high_frequency_words(self.min_frequency)

            pending = [w for w in self._words if _key(w) not in self._resolved]
            synthetic = self._embed(pending) if pending else {}
            self._degraded_words = [w.word for w in pending if _key(w) not in self._resolved]

            entries = []
            for word in self._words:
                entry = self._resolved.get(_key(word)) or synthetic.get(_key(word))
                if entry is not None:
                    entries.append(entry)
            return entries

    @property
    def degraded_words(self) -> List[str]:
        """Words served with a synthetic vector or left out by the last ``get_entries``."""
        with self._lock:
            return list(self._degraded_words)

    def refresh(self) -> None:
        with self._lock:
            self._words = None
            self._resolved.clear()
            self._degraded_words = []

    def _embed(self, words: List[VocabularyWord]) -> Dict[Tuple[str, str], VocabularyEntry]:
        """Resolve *words*, keeping real vectors and returning the synthetic ones."""
        synthetic = {}
        skipped = 0
        with tqdm(total=len(words), desc="Embedding vocabulary", unit="word",
                  disable=not self.show_progress) as progress:
            for start in range(0, len(words), self.chunk_size):
                chunk = words[start:start + self.chunk_size]
                batch = self.acquirer.resolve_all([w.word for w in chunk])
                for word, embedding in zip(chunk, batch.embeddings):
                    if embedding is None:
                        skipped += 1
                        logger.warning(f"Skipping vocabulary word {word.word!r}: no embedding")
                        continue
                    entry = VocabularyEntry(word=word.word, language=word.language,
                                            vector=embedding.vector, weight=word.frequency)
                    if embedding.synthetic:
                        synthetic[_key(word)] = entry
                    else:
                        self._resolved[_key(word)] = entry
                progress.update(len(chunk))

        logger.info(f"Vocabulary: {len(self._resolved)} embedded, {len(synthetic)} synthetic, "
                    f"{skipped} skipped")
        return synthetic


def _key(word: VocabularyWord) -> Tuple[str, str]:
    return word.word, word.language
