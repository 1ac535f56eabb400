from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple


@dataclass
class Bucket:
    tokens: float
    last_ts: float


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after: Optional[int] = None


class InMemoryRateLimiter:
    """
    Token bucket:
      capacity tokens; refill rate tokens/sec.

    Keyed by (client_ip, fingerprint_id). Per-process only; a shared store
    is needed once the API runs behind more than one worker.

    fingerprint_id is client-supplied, so once the map reaches
    `sweep_threshold` keys, buckets that have refilled to capacity are
    dropped (a full bucket is indistinguishable from a fresh one).
    """
    def __init__(
        self,
        capacity: int,
        refill_per_sec: float,
        clock: Callable[[], float] = time.monotonic,
        sweep_threshold: int = 10_000,
    ):
        self.capacity = float(capacity)
        self.refill_per_sec = float(refill_per_sec)
        self.sweep_threshold = sweep_threshold
        self._clock = clock
        self._buckets: Dict[Tuple[str, str], Bucket] = {}
        self._sweep_at = sweep_threshold

    def check(self, client_ip: str, fingerprint_id: str = "", cost: float = 1.0) -> RateLimitDecision:
        now = self._clock()
        k = (client_ip, fingerprint_id)
        b = self._buckets.get(k)
        if b is None:
            if len(self._buckets) >= self._sweep_at:
                self._sweep(now)
            b = Bucket(tokens=self.capacity, last_ts=now)
            self._buckets[k] = b

        # refill
        elapsed = max(0.0, now - b.last_ts)
        b.tokens = min(self.capacity, b.tokens + elapsed * self.refill_per_sec)
        b.last_ts = now

        if b.tokens >= cost:
            b.tokens -= cost
            return RateLimitDecision(allowed=True, remaining=int(b.tokens))

        missing = cost - b.tokens
        retry_after = max(1, math.ceil(missing / self.refill_per_sec)) if self.refill_per_sec > 0 else 60
        return RateLimitDecision(allowed=False, remaining=0, retry_after=retry_after)

    def allow(self, client_ip: str, fingerprint_id: str = "", cost: float = 1.0) -> bool:
        return self.check(client_ip, fingerprint_id, cost).allowed

    def reset(self) -> None:
        self._buckets.clear()
        self._sweep_at = self.sweep_threshold

    def _sweep(self, now: float) -> int:
        full = [
            k
            for k, b in self._buckets.items()
            if b.tokens + max(0.0, now - b.last_ts) * self.refill_per_sec >= self.capacity
        ]
        for k in full:
            del self._buckets[k]
        # live buckets left over raise the bar so the sweep stays amortized
        self._sweep_at = max(self.sweep_threshold, 2 * len(self._buckets))
        return len(full)


def per_minute(limit: int) -> InMemoryRateLimiter:
    """Limiter allowing `limit` requests per minute per key, bursting up to `limit`."""
    return InMemoryRateLimiter(capacity=limit, refill_per_sec=limit / 60.0)
