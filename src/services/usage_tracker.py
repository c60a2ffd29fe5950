"""
Usage Tracker - Counts Strava calls in the short-term and long-term windows

Windows are fixed and roll over lazily: each read or write first checks whether
the window has fully elapsed and, if so, resets the count and restarts the window
at the current time. The counters are persisted after every change so that a
restart keeps the provider's view of usage.

The tracker is local to one process. Several processes sharing the same Strava
application each believe they own the whole budget.
"""

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from src.config import (
    STRAVA_SHORT_TERM_LIMIT,
    STRAVA_SHORT_TERM_SECONDS,
    STRAVA_DAILY_LIMIT,
    STRAVA_LONG_TERM_SECONDS
)
from src.models.models import UsageCounters

logger = logging.getLogger(__name__)

COUNTERS_KEY = "strava_api_counters"


class UsageTracker:
    """Advisory call budget for the Strava API"""

    def __init__(self, store, short_term_limit: int = STRAVA_SHORT_TERM_LIMIT,
                 short_term_seconds: float = STRAVA_SHORT_TERM_SECONDS,
                 long_term_limit: int = STRAVA_DAILY_LIMIT,
                 long_term_seconds: float = STRAVA_LONG_TERM_SECONDS,
                 clock: Optional[Callable[[], float]] = None):
        """
        Initialize the tracker, reloading persisted counters

        Args:
            store: StateStore (anything with get/set)
            short_term_limit: Calls allowed per short-term window
            short_term_seconds: Short-term window length
            long_term_limit: Calls allowed per long-term window
            long_term_seconds: Long-term window length
            clock: Time source in epoch seconds (defaults to time.time)
        """
        self.store = store
        self.short_term_limit = short_term_limit
        self.short_term_seconds = short_term_seconds
        self.long_term_limit = long_term_limit
        self.long_term_seconds = long_term_seconds
        self._clock = clock
        self._lock = threading.RLock()
        self.counters = self._load()

    def _now(self) -> float:
        return self._clock() if self._clock else time.time()

    def _load(self) -> UsageCounters:
        now = self._now()
        data = self.store.get(COUNTERS_KEY)
        if data:
            counters = UsageCounters.from_dict(data)
            logger.info("Restored Strava usage: %d short-term, %d long-term",
                        counters.short_term_count, counters.long_term_count)
            return counters
        return UsageCounters(short_term_window_start=now, long_term_window_start=now)

    def _persist(self) -> None:
        # Best effort: the in-memory counters have already advanced
        try:
            self.store.set(COUNTERS_KEY, self.counters.to_dict())
        except (OSError, TypeError, ValueError):
            logger.error("Failed to persist Strava usage counters", exc_info=True)

    def rollover_if_needed(self) -> bool:
        """
        Reset any window that has fully elapsed

        Returns:
            True if at least one window was reset
        """
        with self._lock:
            now = self._now()
            c = self.counters
            rolled = False
            if now - c.short_term_window_start >= self.short_term_seconds:
                if c.short_term_count:
                    logger.info("Resetting Strava short-term counter (%d calls)", c.short_term_count)
                c.short_term_count = 0
                c.short_term_window_start = now
                rolled = True
            if now - c.long_term_window_start >= self.long_term_seconds:
                if c.long_term_count:
                    logger.info("Resetting Strava long-term counter (%d calls)", c.long_term_count)
                c.long_term_count = 0
                c.long_term_window_start = now
                rolled = True
            if rolled:
                self._persist()
            return rolled

    def record_call(self) -> None:
        """Count one successful call in both windows"""
        with self._lock:
            self.rollover_if_needed()
            self.counters.short_term_count += 1
            self.counters.long_term_count += 1
            self._persist()

    def is_limited(self) -> bool:
        """True if either window has reached its ceiling"""
        return self.remaining() <= 0

    def remaining(self) -> int:
        """Calls still allowed before the tighter of the two ceilings"""
        with self._lock:
            self.rollover_if_needed()
            short_left = self.short_term_limit - self.counters.short_term_count
            long_left = self.long_term_limit - self.counters.long_term_count
            return max(0, min(short_left, long_left))

    def stats(self) -> Dict:
        """Usage per window, for diagnostics"""
        with self._lock:
            self.rollover_if_needed()
            c = self.counters
            return {
                "short_term": self._window_stats(
                    self.short_term_limit, c.short_term_count,
                    c.short_term_window_start + self.short_term_seconds),
                "long_term": self._window_stats(
                    self.long_term_limit, c.long_term_count,
                    c.long_term_window_start + self.long_term_seconds),
            }

    @staticmethod
    def _window_stats(limit: int, used: int, reset_at: float) -> Dict:
        return {
            "limit": limit,
            "used": used,
            "remaining": max(0, limit - used),
            "reset_at": datetime.fromtimestamp(reset_at, tz=timezone.utc).isoformat()
        }
