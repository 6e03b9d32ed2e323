"""
Custom exceptions for the word arithmetic engine.
"""
from typing import List, Optional


class WordMathError(Exception):
    """Base exception for all word arithmetic errors."""
    pass


class DimensionMismatch(WordMathError):
    """
    Two vectors of unequal length were compared or combined.

    Raised when:
    - A binary vector operation receives vectors of different lengths
    - A vocabulary entry does not match the dimension of the target vector

    This indicates a caller bug and is never retried.
    """

    def __init__(self, len_a: int, len_b: int):
        super().__init__(f"Vector dimensions must match: {len_a} != {len_b}")
        self.len_a = len_a
        self.len_b = len_b


class InvalidInput(WordMathError):
    """
    Request input is unusable.

    Raised when:
    - A word is empty after trimming
    - A word is longer than the configured maximum
    - The operation is not one of "+" or "-"
    """
    pass


class BudgetExceeded(WordMathError):
    """
    Rate or spend limit reached and no degraded path is available.

    Only surfaces when the synthetic fallback is disabled; otherwise the
    request degrades instead of failing.
    """

    def __init__(self, message: str, decision: Optional[str] = None):
        super().__init__(message)
        self.decision = decision


class AcquisitionFailed(WordMathError):
    """
    Every tier of the embedding fallback chain failed for a text.
    """

    def __init__(self, text: str, reasons: Optional[List[str]] = None):
        self.text = text
        self.reasons = reasons or []
        detail = "; ".join(self.reasons) if self.reasons else "no tier produced a vector"
        super().__init__(f"Could not acquire embedding for {text!r}: {detail}")


class RequestCancelled(WordMathError):
    """The request deadline passed before resolution finished."""
    pass


class GenerationError(WordMathError):
    """
    Error talking to an external embedding provider.

    Raised when:
    - The provider is unreachable or not configured
    - The provider returns a non-200 response
    - The response body is not a vector
    """

    def __init__(self, message: str, provider: str = None, status_code: int = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
