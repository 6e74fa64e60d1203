from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from threading import Lock
from typing import Callable


@dataclass(frozen=True)
class RateLimitRule:
    name: str
    limit: int
    window_seconds: int
    message: str = "Too many requests. Please try again later."


# Per client IP
LOGIN_RULE = RateLimitRule("auth:login", 5, 15 * 60, "Too many login attempts. Please try again later.")
BOOKING_CREATE_RULE = RateLimitRule("booking:create", 10, 60 * 60, "Too many booking attempts. Please try again later.")
BOOKING_CANCEL_RULE = RateLimitRule(
    "booking:cancel", 5, 60 * 60, "Too many cancellation attempts. Please try again later."
)
AVAILABILITY_RULE = RateLimitRule("api:search", 30, 60, "Too many search requests. Please slow down.")


@dataclass
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after_seconds: int


class RateLimiterService(ABC):
    @abstractmethod
    def check(self, *, key: str, rule: RateLimitRule) -> RateLimitDecision:
        """Count one request for ``key`` under ``rule`` and say whether it may proceed."""


class InMemoryRateLimiterService(RateLimiterService):
    """Sliding-window counters per key and rule, local to this process."""

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._store: dict[tuple[str, str], deque[float]] = {}
        self._lock = Lock()

    def check(self, *, key: str, rule: RateLimitRule) -> RateLimitDecision:
        now = self._clock()
        bucket_key = (rule.name, key)

        with self._lock:
            bucket = self._store.setdefault(bucket_key, deque())
            cutoff = now - rule.window_seconds
            while bucket and bucket[0] <= cutoff:
                bucket.popleft()

            if len(bucket) >= rule.limit:
                retry_after = max(1, int(rule.window_seconds - (now - bucket[0])))
                return RateLimitDecision(
                    allowed=False,
                    limit=rule.limit,
                    remaining=0,
                    retry_after_seconds=retry_after,
                )

            bucket.append(now)
            return RateLimitDecision(
                allowed=True,
                limit=rule.limit,
                remaining=max(0, rule.limit - len(bucket)),
                retry_after_seconds=0,
            )

    def reset(self) -> None:
        with self._lock:
            self._store.clear()
