# app/services/rate_limit.py
"""Per-actor token buckets.

The bucket state lives in a store object so a multi-instance deployment
can back it with something shared; ``MemoryBucketStore`` is the
single-process default. A bucket that has refilled to capacity carries no
information, so stores may drop it once ``full_at`` has passed.
"""
from __future__ import annotations

import math
import threading
import time
from typing import Callable, Optional, Protocol, Tuple

from flask import current_app

from ..exceptions import RateLimitExceeded

DEFAULT = "default"
PUBLIC = "public"  # unauthenticated endpoints, keyed by client address


class BucketStore(Protocol):
    def get(self, key: str) -> Optional[Tuple[float, float]]: ...  # (tokens, updated_at)
    def set(self, key: str, tokens: float, updated_at: float, full_at: float) -> None: ...
    def lock(self, key: str): ...


class MemoryBucketStore:
    def __init__(self, sweep_every: int = 256):
        self._data: dict[str, Tuple[float, float, float]] = {}
        self._lock = threading.Lock()
        self._sweep_every = sweep_every
        self._writes = 0

    def __len__(self):
        return len(self._data)

    def get(self, key):
        entry = self._data.get(key)
        return None if entry is None else entry[:2]

    def set(self, key, tokens, updated_at, full_at):
        self._data[key] = (tokens, updated_at, full_at)
        self._writes += 1
        if self._writes >= self._sweep_every:
            self._writes = 0
            self._sweep(updated_at)

    def _sweep(self, now):
        for key in [k for k, (_, _, full_at) in self._data.items() if full_at <= now]:
            del self._data[key]

    def lock(self, key):
        return self._lock


class TokenBucketLimiter:
    def __init__(self, capacity: int, refill_per_second: float,
                 store: BucketStore | None = None,
                 clock: Callable[[], float] = time.monotonic):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self.refill_per_second = refill_per_second
        self.store = store or MemoryBucketStore()
        self._clock = clock

    def _full_at(self, tokens: float, now: float) -> float:
        if self.refill_per_second <= 0:
            return math.inf
        return now + (self.capacity - tokens) / self.refill_per_second

    def allow(self, actor_id, scope: str = "default", cost: float = 1.0) -> bool:
        key = f"{scope}:{actor_id}"
        with self.store.lock(key):
            now = self._clock()
            state = self.store.get(key)
            if state is None:
                tokens = float(self.capacity)
            else:
                tokens, updated_at = state
                tokens = min(self.capacity, tokens + (now - updated_at) * self.refill_per_second)
            allowed = tokens >= cost
            if allowed:
                tokens -= cost
            self.store.set(key, tokens, now, self._full_at(tokens, now))
            return allowed

    def check(self, actor_id, scope: str = "default") -> None:
        if not self.allow(actor_id, scope):
            raise RateLimitExceeded()


def _extension_key(name: str) -> str:
    return "rate_limiter" if name == DEFAULT else f"rate_limiter.{name}"


def init_app(app, store: BucketStore | None = None) -> TokenBucketLimiter:
    limiter = TokenBucketLimiter(
        capacity=int(app.config.get("RATE_LIMIT_CAPACITY", 5)),
        refill_per_second=float(app.config.get("RATE_LIMIT_REFILL_PER_SEC", 5 / 60)),
        store=store,
    )
    app.extensions[_extension_key(DEFAULT)] = limiter
    app.extensions[_extension_key(PUBLIC)] = TokenBucketLimiter(
        capacity=int(app.config.get("RATE_LIMIT_PUBLIC_CAPACITY", 30)),
        refill_per_second=float(app.config.get("RATE_LIMIT_PUBLIC_REFILL_PER_SEC", 0.5)),
        store=store,
    )
    return limiter


def get_limiter(name: str = DEFAULT) -> TokenBucketLimiter:
    return current_app.extensions[_extension_key(name)]
