"""
Purpose-keyed rate limiting with interval-refill token buckets.

Buckets live in an injected TTL store keyed `purpose:identifier`; the service
instance is owned by the application, not by this module.
"""

import time
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from cachetools import TTLCache

from ..errors import RateLimitedError

logger = logging.getLogger(__name__)

LOGIN = "login"
REGISTER = "register"
PASSWORD_RESET = "password-reset"
INVITE = "invite"
VERIFICATION_RESEND = "verification-resend"


@dataclass(frozen=True)
class BucketPolicy:
    capacity: int
    refill_period_seconds: float

    def __post_init__(self):
        if self.capacity < 1:
            raise ValueError("capacity must be at least 1")
        if self.refill_period_seconds <= 0:
            raise ValueError("refill period must be positive")


class TokenBucket:
    """Refills to full capacity once per elapsed period"""

    def __init__(self, policy: BucketPolicy, now: float):
        self.policy = policy
        self.tokens = policy.capacity
        self.last_refill = now
        self._lock = threading.Lock()

    def _refill(self, now: float) -> None:
        elapsed = now - self.last_refill
        if elapsed >= self.policy.refill_period_seconds:
            periods = int(elapsed // self.policy.refill_period_seconds)
            self.tokens = self.policy.capacity
            self.last_refill += periods * self.policy.refill_period_seconds

    def try_consume(self, now: float) -> bool:
        with self._lock:
            self._refill(now)
            if self.tokens > 0:
                self.tokens -= 1
                return True
            return False

    def available(self, now: float) -> int:
        with self._lock:
            self._refill(now)
            return self.tokens


class BucketStore:
    """Bounded, expiring map of buckets with atomic get-or-create"""

    def __init__(self, maxsize: int = 100000, ttl_seconds: float = 7200):
        self._cache: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl_seconds)
        self._lock = threading.Lock()
        self.ttl_seconds = ttl_seconds

    def get_or_create(self, key: str, factory: Callable[[], TokenBucket]) -> TokenBucket:
        with self._lock:
            bucket = self._cache.get(key)
            if bucket is None:
                bucket = factory()
                self._cache[key] = bucket
            return bucket

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)


class RateLimitService:
    """Grants or refuses attempts per (purpose, identifier)"""

    def __init__(
        self,
        store: BucketStore,
        policies: Dict[str, BucketPolicy],
        clock: Callable[[], float] = time.monotonic,
    ):
        longest = max((p.refill_period_seconds for p in policies.values()), default=0)
        if store.ttl_seconds < longest:
            # An evicted bucket must never come back with more tokens than refill allows
            raise ValueError("bucket store ttl is shorter than the longest refill period")
        self.store = store
        self.policies = dict(policies)
        self.clock = clock

    @classmethod
    def from_config(cls, rate_limit_config, clock: Callable[[], float] = time.monotonic) -> "RateLimitService":
        policies = {
            purpose: BucketPolicy(capacity=p['capacity'], refill_period_seconds=p['period_seconds'])
            for purpose, p in rate_limit_config.policies.items()
        }
        longest = max(p.refill_period_seconds for p in policies.values())
        store = BucketStore(
            maxsize=rate_limit_config.max_buckets,
            ttl_seconds=max(rate_limit_config.bucket_ttl_seconds, longest),
        )
        return cls(store, policies, clock=clock)

    @staticmethod
    def key(purpose: str, identifier: Optional[str]) -> str:
        return f"{purpose}:{identifier or 'unknown'}"

    def _bucket(self, purpose: str, identifier: Optional[str]) -> TokenBucket:
        policy = self.policies.get(purpose)
        if policy is None:
            raise KeyError(f"No rate limit policy for '{purpose}'")
        return self.store.get_or_create(
            self.key(purpose, identifier),
            lambda: TokenBucket(policy, self.clock()),
        )

    def allow(self, purpose: str, identifier: Optional[str]) -> bool:
        """Consume one attempt; False when the bucket is empty"""
        allowed = self._bucket(purpose, identifier).try_consume(self.clock())
        if not allowed:
            logger.warning(f"Rate limit exceeded for {self.key(purpose, identifier)}")
        return allowed

    def check(self, purpose: str, identifier: Optional[str],
              message: str = "Too many requests. Please try again later.") -> None:
        if not self.allow(purpose, identifier):
            raise RateLimitedError(message)

    def remaining(self, purpose: str, identifier: Optional[str]) -> int:
        return self._bucket(purpose, identifier).available(self.clock())
