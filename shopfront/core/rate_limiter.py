from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Mapping, Optional

# Idle hit logs are swept once this many (client, bucket) pairs are tracked.
MAX_TRACKED_KEYS = 10_000


@dataclass(frozen=True)
class RateLimitRule:
    limit: int
    window_seconds: int


@dataclass
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after_seconds: int


class RateLimiterService(ABC):
    @abstractmethod
    def limits(self, bucket: str) -> bool:
        """True when ``bucket`` has a rule."""

    @abstractmethod
    def check(self, *, key: str, bucket: str) -> RateLimitDecision:
        """Count one hit for ``key`` in ``bucket`` and decide whether it may proceed."""

    @abstractmethod
    def reset(self, key: Optional[str] = None) -> None:
        """Forget recorded hits, for one client or for everyone."""


class SlidingWindowLimiter(RateLimiterService):
    """Sliding-window hit log per (client, bucket), one rule per bucket.

    Denied hits are not recorded, so a client that keeps retrying is released
    as soon as its oldest accepted hit leaves the window.
    """

    def __init__(
        self,
        rules: Mapping[str, RateLimitRule],
        *,
        clock: Callable[[], float] = time.monotonic,
        max_tracked_keys: int = MAX_TRACKED_KEYS,
    ) -> None:
        self._rules = dict(rules)
        self._clock = clock
        self._max_tracked_keys = max_tracked_keys
        self._hits: dict[tuple[str, str], deque[float]] = {}
        self._lock = Lock()

    def limits(self, bucket: str) -> bool:
        return bucket in self._rules

    def check(self, *, key: str, bucket: str) -> RateLimitDecision:
        rule = self._rules.get(bucket)
        if rule is None:
            raise KeyError(f"No rate limit rule for bucket {bucket!r}")

        now = self._clock()
        with self._lock:
            if len(self._hits) > self._max_tracked_keys:
                self._sweep(now)

            hits = self._hits.setdefault((key, bucket), deque())
            self._expire(hits, now - rule.window_seconds)

            if len(hits) >= rule.limit:
                retry_after = max(1, int(rule.window_seconds - (now - hits[0])))
                return RateLimitDecision(False, rule.limit, 0, retry_after)

            hits.append(now)
            return RateLimitDecision(True, rule.limit, max(0, rule.limit - len(hits)), 0)

    def reset(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._hits.clear()
                return
            for tracked in [tracked for tracked in self._hits if tracked[0] == key]:
                del self._hits[tracked]

    @staticmethod
    def _expire(hits: deque[float], cutoff: float) -> None:
        while hits and hits[0] <= cutoff:
            hits.popleft()

    def _sweep(self, now: float) -> None:
        for tracked, hits in list(self._hits.items()):
            self._expire(hits, now - self._rules[tracked[1]].window_seconds)
            if not hits:
                del self._hits[tracked]
