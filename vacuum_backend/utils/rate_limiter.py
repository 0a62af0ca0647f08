"""
Sliding-window rate limiting for outbound alerts.

Prevents alert storms: a flapping controller or a stuck threshold must not
send the same alert for the same machine more than N times per window.
Keys are free-form; the dispatcher uses "{notification_type}:{machine_id}".
"""

from collections import deque
from datetime import datetime, timedelta
from typing import Deque, Dict, Optional
import threading

from vacuum_backend.utils.date_formatter import Clock, now_local


class SlidingWindowRateLimiter:
    """
    Track events per key in sliding time windows.

    Uses collections.deque for O(1) append and cheap pruning of old entries.
    Constructed explicitly and owned by the service that needs it.
    """

    def __init__(self, max_events: int = 10, window_seconds: int = 3600, clock: Clock = now_local):
        """
        Initialize rate limiter.

        Args:
            max_events: Events allowed per key inside the window (default 10)
            window_seconds: Window length (default one hour)
            clock: Time source
        """
        self.max_events = max_events
        self.window = timedelta(seconds=window_seconds)
        self.clock = clock
        self._events: Dict[str, Deque[datetime]] = {}
        self._lock = threading.Lock()

    def _prune(self, key: str, now: datetime) -> Deque[datetime]:
        events = self._events.setdefault(key, deque())
        cutoff = now - self.window
        while events and events[0] <= cutoff:
            events.popleft()
        return events

    def allow(self, key: str, now: Optional[datetime] = None) -> bool:
        """
        Record an event for key if the window still has room.

        Args:
            key: Rate limit bucket
            now: Event time (defaults to clock)

        Returns:
            True if the event is allowed (and recorded), False if rate limited
        """
        now = now or self.clock()
        with self._lock:
            events = self._prune(key, now)
            if len(events) >= self.max_events:
                return False
            events.append(now)
            return True

    def get_stats(self) -> Dict[str, int]:
        """
        Events currently counted per key.

        Returns:
            Dictionary key → events in window (keys with no events omitted)
        """
        now = self.clock()
        with self._lock:
            stats = {}
            for key in list(self._events):
                count = len(self._prune(key, now))
                if count:
                    stats[key] = count
            return stats

