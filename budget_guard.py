"""
Request rate limiting and daily spend circuit breaker for embedding calls.
"""
import threading
import time
from collections import deque
from datetime import date
from enum import Enum
from typing import Any, Callable, Deque, Dict

from logger_config import get_logger

logger = get_logger("wordmath.budget", "budget")


class Decision(Enum):
    """Outcome of a budget check."""
    PROCEED = "proceed"        # call the external generator
    CACHE_ONLY = "cache_only"  # daily budget exhausted, never call the generator
    REJECT = "reject"          # rate limited


class BudgetGuard:
    """
    Sliding-window request limiter combined with a daily cost breaker.

    The check and the bookkeeping for a request happen under one lock, so two
    concurrent callers can never both squeeze in under the spend limit and
    exceed it together.
    """

    def __init__(self,
                 max_requests: int = 60,
                 window_seconds: float = 60.0,
                 daily_budget: float = 1.0,
                 clock: Callable[[], float] = time.time):
        """
        Initialize the guard.

        Args:
            max_requests: Requests allowed inside one window
            window_seconds: Length of the sliding window
            daily_budget: Spend allowed per calendar day (same unit as cost estimates)
            clock: Wall-clock source returning epoch seconds
        """
        if max_requests <= 0:
            raise ValueError("max_requests must be positive")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")

        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.daily_budget = daily_budget
        self._clock = clock

        self._timestamps: Deque[float] = deque()
        self._daily_spend = 0.0
        self._day = self._today()
        self._lock = threading.Lock()

    def _today(self) -> date:
        return date.fromtimestamp(self._clock())

    def _roll_day(self) -> None:
        today = self._today()
        if today != self._day:
            logger.info(f"Day boundary crossed ({self._day} -> {today}), resetting spend "
                        f"of {self._daily_spend:.4f}")
            self._day = today
            self._daily_spend = 0.0

    def _prune(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self._timestamps and self._timestamps[0] <= cutoff:
            self._timestamps.popleft()

    def allow(self, cost_estimate: float = 0.0) -> Decision:
        """
        Decide whether an external generation call may go ahead.

        Args:
            cost_estimate: Estimated cost of the call

        Returns:
            Decision.PROCEED (and the call is recorded), Decision.CACHE_ONLY or
            Decision.REJECT
        """
        with self._lock:
            now = self._clock()
            self._roll_day()
            self._prune(now)

            if len(self._timestamps) >= self.max_requests:
                logger.warning(f"Rate limit reached: {len(self._timestamps)} requests "
                               f"in the last {self.window_seconds:g}s")
                return Decision.REJECT

            if self._daily_spend + cost_estimate > self.daily_budget:
                logger.warning(f"Daily budget exhausted: spent {self._daily_spend:.4f} "
                               f"+ {cost_estimate:.4f} > {self.daily_budget:.4f}, serving cache only")
                return Decision.CACHE_ONLY

            self._timestamps.append(now)
            self._daily_spend += cost_estimate
            return Decision.PROCEED

    def snapshot(self) -> Dict[str, Any]:
        """Current budget state for diagnostics."""
        with self._lock:
            self._roll_day()
            self._prune(self._clock())
            return {
                "requests_in_window": len(self._timestamps),
                "max_requests": self.max_requests,
                "window_seconds": self.window_seconds,
                "daily_spend": self._daily_spend,
                "daily_budget": self.daily_budget,
                "day": self._day.isoformat(),
            }

    def reset(self) -> None:
        with self._lock:
            self._timestamps.clear()
            self._daily_spend = 0.0
            self._day = self._today()
