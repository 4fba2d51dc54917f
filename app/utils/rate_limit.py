"""
Fixed-window rate limiter keyed by an arbitrary string (usually client IP).

Configure via RATE_LIMIT_ENABLED (default: 1) and RATE_LIMIT_BACKEND:
  - "memory" (default): per-process sliding window, fine for a single worker
  - "redis": shared INCR/EXPIRE counters so every worker sees the same counts
"""

from __future__ import annotations
import os
import time
from collections import defaultdict
from threading import Lock

from app.utils.cache import r

RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "1") == "1"
RATE_LIMIT_BACKEND = os.getenv("RATE_LIMIT_BACKEND", "memory").lower()

_lock = Lock()
_counts: dict[str, list[float]] = defaultdict(list)


def _clean_old(ts_list: list[float], window: int, now: float) -> None:
    cutoff = now - window
    while ts_list and ts_list[0] <= cutoff:
        ts_list.pop(0)


def _memory_hit(key: str, limit: int, window: int) -> bool:
    now = time.time()
    with _lock:
        _clean_old(_counts[key], window, now)
        if len(_counts[key]) >= limit:
            return True
        _counts[key].append(now)
        return False


def _redis_hit(key: str, limit: int, window: int) -> bool:
    bucket = int(time.time() // window)
    rkey = f"ratelimit:{key}:{bucket}"
    pipe = r().pipeline()
    pipe.incr(rkey)
    pipe.expire(rkey, window)
    count, _ = pipe.execute()
    return int(count) > limit


def is_rate_limited(key: str, limit: int, window: int = 60) -> bool:
    """Record one attempt for `key`; True if it exceeds `limit` within `window` seconds."""
    if not RATE_LIMIT_ENABLED or limit <= 0:
        return False
    if RATE_LIMIT_BACKEND == "redis":
        return _redis_hit(key, limit, window)
    return _memory_hit(key, limit, window)


def reset_rate_limits() -> None:
    """Drop in-memory counters (tests, dev shell)."""
    with _lock:
        _counts.clear()


def rate_limit_key() -> str:
    """Get rate limit key from request (IP)."""
    from flask import request

    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.remote_addr or "unknown"
