"""
Error tracking and retry support for the embedding fallback chain.
"""
import time
import logging
import threading
from typing import Dict, Any, List, Optional, Callable, Tuple
from datetime import datetime
from collections import defaultdict

import requests

from exceptions import GenerationError

logger = logging.getLogger("wordmath.errors")


class ErrorHandler:
    """
    Records tier failures with context and retries recoverable operations
    with exponential backoff.
    """

    # Define which errors are potentially recoverable
    RECOVERABLE_ERRORS = (
        TimeoutError,
        ConnectionError,
        requests.ConnectionError,
        requests.Timeout,
    )

    # Provider status codes worth another attempt
    RECOVERABLE_STATUS_CODES = {429, 500, 502, 503, 504}

    def __init__(
        self,
        max_retries: int = 0,
        retry_interval: float = 0.5,
        max_details: int = 100,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Initialize the error handler.

        Args:
            max_retries: Maximum number of retry attempts for recoverable errors
            retry_interval: Base interval (in seconds) between retry attempts
            max_details: Number of recent error records kept in memory
            sleep: Sleep function used between retries
        """
        self.max_retries = max_retries
        self.retry_interval = retry_interval
        self.max_details = max_details
        self._sleep = sleep
        self.error_counts: Dict[str, int] = defaultdict(int)
        self.error_details: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def handle_error(self, error: Exception, context: Dict[str, Any]) -> None:
        """
        Record an error with context information.

        Args:
            error: Exception that was raised
            context: Dictionary with contextual information about the error
        """
        error_type = self.categorize_error(error)

        details = {
            "timestamp": datetime.now().isoformat(),
            "error_type": error_type,
            "error_message": str(error),
            "recoverable": self.is_recoverable(error),
            "context": context,
        }

        with self._lock:
            self.error_counts[error_type] += 1
            self.error_details.append(details)
            if len(self.error_details) > self.max_details:
                self.error_details.pop(0)

        self.log_error(error, context)

    def log_error(self, error: Exception, context: Dict[str, Any]) -> None:
        context_str = ", ".join(f"{k}={v}" for k, v in context.items())
        logger.warning(f"Error: {type(error).__name__}: {str(error)} - Context: {context_str}")

    def is_recoverable(self, error: Exception) -> bool:
        """True for transient transport failures and throttling responses."""
        if isinstance(error, self.RECOVERABLE_ERRORS):
            return True
        if isinstance(error, GenerationError):
            if error.status_code in self.RECOVERABLE_STATUS_CODES:
                return True
            cause = error.__cause__
            return cause is not None and isinstance(cause, self.RECOVERABLE_ERRORS)
        return False

    def should_retry(self, error: Exception, retry_count: int) -> bool:
        """
        Determine if an operation should be retried.

        Args:
            error: The exception raised by the last attempt
            retry_count: Retries already performed

        Returns:
            True if operation should be retried, False otherwise
        """
        if retry_count >= self.max_retries:
            return False
        return self.is_recoverable(error)

    def retry_operation(
        self,
        operation: Callable,
        args: Optional[Tuple] = None,
        kwargs: Optional[Dict[str, Any]] = None,
        before_attempt: Optional[Callable[[int], None]] = None
    ) -> Any:
        """
        Run an operation, retrying recoverable failures with exponential backoff.

        Args:
            operation: Function to call
            args: Positional arguments for the function
            kwargs: Keyword arguments for the function
            before_attempt: Called with the retry count before every attempt,
                the first one included; an exception it raises stops the
                loop and propagates unchanged

        Returns:
            The operation's result

        Raises:
            The last exception once retries are exhausted or the error is
            not recoverable
        """
        args = args or ()
        kwargs = kwargs or {}

        retry_count = 0
        while True:
            if before_attempt is not None:
                before_attempt(retry_count)
            try:
                result = operation(*args, **kwargs)
                if retry_count > 0:
                    logger.info(f"Operation succeeded on retry attempt {retry_count}")
                return result
            except Exception as e:
                if not self.should_retry(e, retry_count):
                    raise
                retry_count += 1
                wait_time = self.retry_interval * (2 ** (retry_count - 1))
                logger.warning(
                    f"Retry attempt {retry_count}/{self.max_retries} after error: "
                    f"{type(e).__name__}: {str(e)} - Waiting {wait_time:.1f}s"
                )
                self._sleep(wait_time)

    def get_error_summary(self) -> Dict[str, Any]:
        """
        Get summary of all errors encountered.

        Returns:
            Dictionary with error summary
        """
        with self._lock:
            return {
                "total_errors": sum(self.error_counts.values()),
                "error_count_by_type": dict(self.error_counts),
                "recoverable_errors": sum(1 for e in self.error_details if e["recoverable"]),
                "unrecoverable_errors": sum(1 for e in self.error_details if not e["recoverable"]),
                "latest_error": self.error_details[-1] if self.error_details else None,
            }

    def categorize_error(self, error: Exception) -> str:
        return type(error).__name__

    def reset(self) -> None:
        with self._lock:
            self.error_counts.clear()
            self.error_details.clear()
