import re
import logging
from typing import Dict, List, Optional, Pattern, Tuple

import pycountry

logger = logging.getLogger("wordmath.language")

DEFAULT_LANGUAGE = "en"

# Checked in this order; the first matching script wins. Turkish comes first
# because its diacritics also appear in otherwise Latin words.
LANGUAGE_PRIORITY: Tuple[Tuple[str, Pattern], ...] = (
    ("tr", re.compile(r"[çğıöşüÇĞİÖŞÜ]")),
    ("ar", re.compile(r"[\u0600-\u06FF]")),
    ("zh", re.compile(r"[\u4E00-\u9FFF]")),
    ("ru", re.compile(r"[а-яё]", re.IGNORECASE)),
)


class LanguageDetector:
    """Character-set heuristic that tags a word with a coarse language code.

    The tag only feeds result labels and UI hints; the embedding model itself
    is multilingual. Never raises. Ties resolve by ``LANGUAGE_PRIORITY`` order.
    """

    # Mapping language codes to full names
    LANGUAGE_NAMES: Dict[str, str] = {}

    def __init__(self, default: str = DEFAULT_LANGUAGE):
        self.default = default
        if not LanguageDetector.LANGUAGE_NAMES:
            self._initialize_language_names()

    @classmethod
    def _initialize_language_names(cls) -> None:
        """Initialize mapping of the detectable codes to full names."""
        codes = [code for code, _ in LANGUAGE_PRIORITY] + [DEFAULT_LANGUAGE]
        for code in codes:
            lang = pycountry.languages.get(alpha_2=code)
            cls.LANGUAGE_NAMES[code] = lang.name if lang is not None else code

    def detect(self, text: str) -> str:
        """
        Detect the language tag of *text*.

        Args:
            text: Word or short phrase

        Returns:
            One of "tr", "ar", "zh", "ru" or the default tag
        """
        if not isinstance(text, str) or not text:
            return self.default

        for code, pattern in LANGUAGE_PRIORITY:
            if pattern.search(text):
                logger.debug("Detected %s for %r", code, text)
                return code
        return self.default

    def language_name(self, code: str) -> str:
        """Human readable name for a tag, falling back to the tag itself."""
        if code in self.LANGUAGE_NAMES:
            return self.LANGUAGE_NAMES[code]
        lang = pycountry.languages.get(alpha_2=code) if code else None
        return lang.name if lang is not None else (code or "Unknown")


_default_detector: Optional[LanguageDetector] = None


def detect_language(text: str) -> str:
    """Module level shortcut using a shared detector."""
    global _default_detector
    if _default_detector is None:
        _default_detector = LanguageDetector()
    return _default_detector.detect(text)


def get_supported_languages() -> List[Dict]:
    """
    Get the languages the heuristic can tell apart, in priority order.

    Returns:
        List[Dict]: ``{'code', 'name', 'priority'}`` per language, the
        default tag last
    """
    detector = LanguageDetector()
    supported = []
    for priority, (code, _) in enumerate(LANGUAGE_PRIORITY, start=1):
        supported.append({
            'code': code,
            'name': detector.language_name(code),
            'priority': priority,
        })
    supported.append({
        'code': DEFAULT_LANGUAGE,
        'name': detector.language_name(DEFAULT_LANGUAGE),
        'priority': len(LANGUAGE_PRIORITY) + 1,
    })
    return supported
