"""
Rate Limiter - Fixed-Window Request Counter
===========================================

ARCHITECTURAL DECISION:
- One counter per caller key: ``{count, reset_at}``
- First request (or first after ``reset_at`` has passed) opens a new window
- Requests are rejected once ``count`` reaches the limit
- Counters live behind a RateLimiterStore so they can move out of process

LIMITATION:
- InMemoryRateLimiterStore is per-process and forgets everything on restart.
  Running several workers multiplies the effective limit.

EXTENSIBILITY:
- To share limits across processes: implement RateLimiterStore on top of a
  shared cache and pass it to RateLimiter.
"""

import logging
import math
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10
DEFAULT_WINDOW_SECONDS = 60


@dataclass
class WindowState:
    count: int
    reset_at: float


class RateLimiterStore(ABC):
    """Storage for per-key window counters."""

    @abstractmethod
    def get(self, key: str) -> Optional[WindowState]:
        """Return the key's current window, or None if unknown/expired."""
        pass

    @abstractmethod
    def set(self, key: str, state: WindowState, ttl: float) -> None:
        """Store a window that must be kept for at least ``ttl`` seconds."""
        pass

    @abstractmethod
    def increment(self, key: str) -> Optional[int]:
        """Add one to the key's count. Returns the new count, or None if missing."""
        pass


class InMemoryRateLimiterStore(RateLimiterStore):
    """Dict-backed store guarded by a lock; expired entries are swept on write."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, Tuple[WindowState, float]] = {}

    def get(self, key: str) -> Optional[WindowState]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            state, expires_at = entry
            if self._clock() > expires_at:
                del self._entries[key]
                return None
            return WindowState(state.count, state.reset_at)

    def set(self, key: str, state: WindowState, ttl: float) -> None:
        with self._lock:
            now = self._clock()
            self._sweep(now)
            self._entries[key] = (WindowState(state.count, state.reset_at), now + ttl)

    def increment(self, key: str) -> Optional[int]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            entry[0].count += 1
            return entry[0].count

    def __len__(self) -> int:
        return len(self._entries)

    def _sweep(self, now: float) -> None:
        expired = [k for k, (_, expires_at) in self._entries.items() if now > expires_at]
        for key in expired:
            del self._entries[key]


class RateLimiter:
    """
    Fixed-window limiter.

    USAGE:
        limiter = RateLimiter(limit=10, window_seconds=60)
        if not limiter.allow(client_ip):
            raise RateLimitExceeded(client_ip, limiter.retry_after(client_ip))
    """

    def __init__(
        self,
        limit: int = DEFAULT_LIMIT,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        store: Optional[RateLimiterStore] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._store = store or InMemoryRateLimiterStore(clock=clock)
        # Makes get-then-increment atomic for this process
        self._lock = threading.Lock()

    def allow(self, caller_key: str) -> bool:
        """Count one request for ``caller_key``; False if it's over the limit."""
        with self._lock:
            now = self._clock()
            state = self._store.get(caller_key)

            if state is None or now > state.reset_at:
                self._store.set(
                    caller_key,
                    WindowState(count=1, reset_at=now + self.window_seconds),
                    ttl=self.window_seconds,
                )
                return True

            if state.count >= self.limit:
                logger.info(f"Rate limit hit for {caller_key} ({state.count}/{self.limit})")
                return False

            self._store.increment(caller_key)
            return True

    def retry_after(self, caller_key: str) -> int:
        """Whole seconds until ``caller_key``'s window resets (0 if it's open)."""
        now = self._clock()
        state = self._store.get(caller_key)
        if state is None or now > state.reset_at:
            return 0
        return max(1, math.ceil(state.reset_at - now))
