"""Simple in-memory rate limiting helpers."""

from __future__ import annotations

import asyncio
import time
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Optional

from devevent.errors import RateLimited


@dataclass
class _Bucket:
    hits: Deque[float]


class RateLimiter:
    """An asyncio-friendly sliding window rate limiter."""

    def __init__(self, *, limit: int, window_seconds: float) -> None:
        if limit <= 0:
            raise ValueError("limit must be positive")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.limit = limit
        self.window = window_seconds
        self._lock = asyncio.Lock()
        self._buckets: Dict[str, _Bucket] = {}

    async def try_acquire(self, key: str) -> bool:
        now = time.monotonic()
        cutoff = now - self.window

        async with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = _Bucket(deque())
                self._buckets[key] = bucket

            hits = bucket.hits
            while hits and hits[0] <= cutoff:
                hits.popleft()

            if len(hits) >= self.limit:
                return False

            hits.append(now)
            return True

    async def check(self, key: str) -> None:
        if not await self.try_acquire(key):
            raise RateLimited("Too many booking attempts. Please try again later.")


def build_booking_rate_limiter(limit: int, window: float) -> Optional[RateLimiter]:
    """Return a limiter for booking requests, or None when limiting is disabled."""

    if limit <= 0:
        return None
    return RateLimiter(limit=limit, window_seconds=window if window > 0 else 60.0)


__all__ = ["RateLimiter", "build_booking_rate_limiter"]
