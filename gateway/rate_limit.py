"""Identity-keyed fixed-window rate limiting.

Buckets live in an injected :class:`BucketStore`; the limiter itself holds no
per-key state. Authenticated callers are keyed by user id, anonymous callers
by a salted fingerprint of address and request headers.
"""

from __future__ import annotations

import hashlib
import logging
import math
import secrets
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, Dict, Mapping, Optional, Protocol

logger = logging.getLogger(__name__)

IDENTITY_FIRST = "identity_first"
ADDRESS_ONLY = "address_only"
KEY_STRATEGIES = frozenset({IDENTITY_FIRST, ADDRESS_ONLY})

FINGERPRINT_HEX_CHARS = 16

# ── Profile names ──
GENERAL = "general"
PLATFORM_API = "platform_api"
AI = "ai"
AUTHENTICATION = "authentication"
WEBHOOK = "webhook"
CLI = "cli"

_MINUTE_MS = 60 * 1000


@dataclass(frozen=True)
class RateLimitProfile:
    name: str
    window_ms: int
    max_requests: int
    key_strategy: str = IDENTITY_FIRST
    count_failed_requests: bool = True
    count_successful_requests: bool = True
    message: str = "Too many requests, please try again later."

    def __post_init__(self) -> None:
        if self.window_ms <= 0:
            raise ValueError(f"rate limit profile {self.name}: window_ms must be positive")
        if self.max_requests <= 0:
            raise ValueError(f"rate limit profile {self.name}: max_requests must be positive")
        if self.key_strategy not in KEY_STRATEGIES:
            raise ValueError(f"rate limit profile {self.name}: unknown key strategy {self.key_strategy!r}")

    def counts(self, status: int, failed: Optional[bool] = None) -> bool:
        """Whether a response keeps its quota slot.

        *failed* overrides the HTTP *status* when the handler knows the
        outcome better (e.g. a 200 carrying ``success: false``).
        """
        if failed is None:
            failed = status >= 400
        if failed:
            return self.count_failed_requests
        return self.count_successful_requests


@dataclass
class RateLimitBucket:
    key: str
    count: int
    window_start: float
    window_ms: int

    def expired(self, now_ms: float) -> bool:
        return now_ms - self.window_start >= self.window_ms


@dataclass(frozen=True)
class RequestIdentity:
    """Signals the limiter keys on."""

    identity: Optional[str] = None
    address: str = ""
    user_agent: str = ""
    accept_language: str = ""


@dataclass(frozen=True)
class Decision:
    allowed: bool
    profile: str
    key: str
    limit: int
    count: int
    window_start: float
    reset_at: float
    now: float

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)

    @property
    def reset_seconds(self) -> int:
        return max(0, math.ceil((self.reset_at - self.now) / 1000.0))

    @property
    def retry_after_seconds(self) -> float:
        if self.allowed:
            return 0.0
        return max(0.0, (self.reset_at - self.now) / 1000.0)

    @property
    def retry_after_minutes(self) -> int:
        return math.ceil(self.retry_after_seconds / 60.0)


class BucketStore(Protocol):
    def increment(self, key: str, window_ms: int, now_ms: float) -> RateLimitBucket: ...

    def decrement(self, key: str, window_start: float) -> None: ...

    def get(self, key: str) -> Optional[RateLimitBucket]: ...

    def reset(self, key: str) -> None: ...

    def purge_expired(self, now_ms: float) -> int: ...


class MemoryBucketStore:
    """Process-local bucket store. Counters are lost on restart."""

    def __init__(self, sweep_every: int = 1000):
        self._buckets: Dict[str, RateLimitBucket] = {}
        self._lock = threading.Lock()
        self._sweep_every = max(1, int(sweep_every))
        self._ops = 0

    def __len__(self) -> int:
        return len(self._buckets)

    def increment(self, key: str, window_ms: int, now_ms: float) -> RateLimitBucket:
        with self._lock:
            self._ops += 1
            if self._ops % self._sweep_every == 0:
                self._purge_locked(now_ms)
            bucket = self._buckets.get(key)
            if bucket is None or bucket.expired(now_ms):
                bucket = RateLimitBucket(key=key, count=0, window_start=now_ms, window_ms=window_ms)
                self._buckets[key] = bucket
            bucket.count += 1
            return replace(bucket)

    def decrement(self, key: str, window_start: float) -> None:
        with self._lock:
            bucket = self._buckets.get(key)
            # A newer window has replaced the one the slot was taken from.
            if bucket is None or bucket.window_start != window_start:
                return
            if bucket.count > 0:
                bucket.count -= 1

    def get(self, key: str) -> Optional[RateLimitBucket]:
        with self._lock:
            bucket = self._buckets.get(key)
            return replace(bucket) if bucket is not None else None

    def reset(self, key: str) -> None:
        with self._lock:
            self._buckets.pop(key, None)

    def purge_expired(self, now_ms: float) -> int:
        with self._lock:
            return self._purge_locked(now_ms)

    def _purge_locked(self, now_ms: float) -> int:
        stale = [key for key, bucket in self._buckets.items() if bucket.expired(now_ms)]
        for key in stale:
            self._buckets.pop(key, None)
        return len(stale)


def fingerprint(address: str, user_agent: str, accept_language: str, salt: str = "") -> str:
    combined = f"{salt}{address or 'unknown'}:{user_agent or 'unknown'}:{accept_language or 'unknown'}"
    return hashlib.sha256(combined.encode("utf-8")).hexdigest()[:FINGERPRINT_HEX_CHARS]


def derive_key(profile: RateLimitProfile, who: RequestIdentity, salt: str = "") -> str:
    if profile.key_strategy == ADDRESS_ONLY:
        return f"{profile.name}:{who.address or 'unknown'}"
    if who.identity:
        return f"user:{who.identity}"
    return "ip:" + fingerprint(who.address, who.user_agent, who.accept_language, salt)


def default_profiles(
    general_window_ms: int = 15 * _MINUTE_MS,
    general_max_requests: int = 100,
) -> Dict[str, RateLimitProfile]:
    profiles = [
        RateLimitProfile(
            name=GENERAL,
            window_ms=general_window_ms,
            max_requests=general_max_requests,
            count_failed_requests=False,
        ),
        RateLimitProfile(
            name=PLATFORM_API,
            window_ms=15 * _MINUTE_MS,
            max_requests=60,
            count_failed_requests=False,
            message="Too many GitHub API requests, please try again later.",
        ),
        RateLimitProfile(
            name=AI,
            window_ms=15 * _MINUTE_MS,
            max_requests=50,
            count_failed_requests=False,
            message="Too many AI requests, please try again later.",
        ),
        RateLimitProfile(
            name=AUTHENTICATION,
            window_ms=15 * _MINUTE_MS,
            max_requests=5,
            count_successful_requests=False,
            message="Too many authentication attempts, please try again later.",
        ),
        RateLimitProfile(
            name=WEBHOOK,
            window_ms=5 * _MINUTE_MS,
            max_requests=100,
            key_strategy=ADDRESS_ONLY,
            message="Webhook rate limit exceeded.",
        ),
        RateLimitProfile(
            name=CLI,
            window_ms=_MINUTE_MS,
            max_requests=30,
            message="Too many CLI commands, please try again later.",
        ),
    ]
    return {p.name: p for p in profiles}


def validate_profiles(profiles: Mapping[str, RateLimitProfile]) -> None:
    auth = profiles.get(AUTHENTICATION)
    if auth is None:
        raise ValueError("rate limit profile 'authentication' is required")
    if auth.count_successful_requests:
        raise ValueError("authentication profile must not count successful attempts")
    for name, profile in profiles.items():
        if name != AUTHENTICATION and profile.max_requests <= auth.max_requests:
            raise ValueError(
                f"authentication profile must have the smallest max_requests "
                f"({auth.max_requests} >= {name}:{profile.max_requests})"
            )


def build_profiles(
    general_window_ms: Optional[int] = None,
    general_max_requests: Optional[int] = None,
    overrides: Optional[Mapping[str, Mapping[str, object]]] = None,
) -> Dict[str, RateLimitProfile]:
    """Default profiles with config overrides applied, validated."""
    kwargs = {}
    if general_window_ms is not None:
        kwargs["general_window_ms"] = int(general_window_ms)
    if general_max_requests is not None:
        kwargs["general_max_requests"] = int(general_max_requests)
    profiles = default_profiles(**kwargs)

    for name, raw in (overrides or {}).items():
        if not isinstance(raw, Mapping):
            raise ValueError(f"rate limit override for {name!r} must be a mapping")
        base = profiles.get(name)
        if base is None:
            raise ValueError(f"unknown rate limit profile {name!r}")
        fields = {}
        for field_name in (
            "window_ms",
            "max_requests",
            "key_strategy",
            "count_failed_requests",
            "count_successful_requests",
            "message",
        ):
            if field_name in raw:
                fields[field_name] = raw[field_name]
        if "window_ms" in fields:
            fields["window_ms"] = int(fields["window_ms"])
        if "max_requests" in fields:
            fields["max_requests"] = int(fields["max_requests"])
        profiles[name] = replace(base, **fields)

    validate_profiles(profiles)
    return profiles


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class RateLimiter:
    """Fixed-window limiter over named profiles."""

    def __init__(
        self,
        profiles: Optional[Mapping[str, RateLimitProfile]] = None,
        store: Optional[BucketStore] = None,
        *,
        salt: Optional[str] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.profiles: Dict[str, RateLimitProfile] = dict(profiles or build_profiles())
        self.store: BucketStore = store if store is not None else MemoryBucketStore()
        self.salt = secrets.token_hex(16) if salt is None else str(salt)
        self._clock = clock or _monotonic_ms

    def profile(self, name: str) -> RateLimitProfile:
        try:
            return self.profiles[name]
        except KeyError:
            raise ValueError(f"unknown rate limit profile {name!r}") from None

    def key_for(self, profile_name: str, who: RequestIdentity) -> str:
        return derive_key(self.profile(profile_name), who, self.salt)

    def check_and_consume(self, profile_name: str, who: RequestIdentity) -> Decision:
        profile = self.profile(profile_name)
        key = derive_key(profile, who, self.salt)
        now = self._clock()
        bucket = self.store.increment(f"{profile.name}|{key}", profile.window_ms, now)
        allowed = bucket.count <= profile.max_requests
        decision = Decision(
            allowed=allowed,
            profile=profile.name,
            key=key,
            limit=profile.max_requests,
            count=bucket.count,
            window_start=bucket.window_start,
            reset_at=bucket.window_start + profile.window_ms,
            now=now,
        )
        if not allowed:
            logger.warning(
                "Rate limit exceeded profile=%s key=%s limit=%d",
                profile.name,
                key,
                profile.max_requests,
            )
        return decision

    def release(self, decision: Decision) -> None:
        """Give back the slot taken by *decision* (two-phase consume)."""
        self.store.decrement(f"{decision.profile}|{decision.key}", decision.window_start)

    def reset(self, profile_name: str, who: RequestIdentity) -> None:
        profile = self.profile(profile_name)
        self.store.reset(f"{profile.name}|{derive_key(profile, who, self.salt)}")
