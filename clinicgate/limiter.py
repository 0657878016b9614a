# clinicgate/limiter.py
# Fixed-window request limiting keyed by client identifier.

import json
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, Optional, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError, WatchError

logger = logging.getLogger(__name__)

USER_AGENT_PREFIX_LENGTH = 20


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class RateLimitEntry:
    count: int
    reset_time: int  # epoch milliseconds


@dataclass(frozen=True)
class RateLimitResult:
    limited: bool
    reset_in: Optional[int] = None  # seconds
    message: Optional[str] = None


# Maps the stored entry to (entry to store or None, ttl in ms, result)
StepFunction = Callable[[Optional[RateLimitEntry]], Tuple[Optional[RateLimitEntry], Optional[int], RateLimitResult]]


class InMemoryRateLimitStore:
    """Process-local entry store. Not shared between workers or hosts.

    Callers serialise access; ``RateLimiter`` holds its lock around every call.
    """

    def __init__(self):
        self._entries: Dict[str, RateLimitEntry] = {}

    def get(self, identifier: str) -> Optional[RateLimitEntry]:
        return self._entries.get(identifier)

    def update(self, identifier: str, step: StepFunction) -> RateLimitResult:
        entry, _, result = step(self._entries.get(identifier))
        if entry is not None:
            self._entries[identifier] = entry
        return result

    def delete_if_expired(self, identifier: str, now: int) -> bool:
        entry = self._entries.get(identifier)
        if entry is None or now <= entry.reset_time:
            return False
        del self._entries[identifier]
        return True

    def items(self) -> Iterator[Tuple[str, RateLimitEntry]]:
        # Snapshot so callers may delete while iterating
        return iter(list(self._entries.items()))

    def __len__(self) -> int:
        return len(self._entries)


class RedisRateLimitStore:
    """Entry store shared by every process talking to the same Redis.

    Each read-modify-write runs as an optimistic transaction: the key is
    WATCHed, the new value is written in MULTI/EXEC and the step is retried
    when another client touched the key in between.
    """

    def __init__(self, client, namespace: str):
        self.client = client
        self.prefix = f"rate_limit:{namespace}:"

    def _key(self, identifier: str) -> str:
        return f"{self.prefix}{identifier}"

    @staticmethod
    def _decode(raw) -> Optional[RateLimitEntry]:
        if raw is None:
            return None
        data = json.loads(raw)
        return RateLimitEntry(count=int(data["count"]), reset_time=int(data["reset_time"]))

    @staticmethod
    def _encode(entry: RateLimitEntry) -> str:
        return json.dumps({"count": entry.count, "reset_time": entry.reset_time})

    def _transact(self, key: str, apply):
        with self.client.pipeline() as pipe:
            while True:
                try:
                    pipe.watch(key)
                    current = self._decode(pipe.get(key))
                    pipe.multi()
                    outcome = apply(pipe, current)
                    pipe.execute()
                    return outcome
                except WatchError:
                    logger.debug(f"Concurrent update on {key}, retrying")
                    continue

    def get(self, identifier: str) -> Optional[RateLimitEntry]:
        return self._decode(self.client.get(self._key(identifier)))

    def update(self, identifier: str, step: StepFunction) -> RateLimitResult:
        key = self._key(identifier)

        def apply(pipe, current):
            entry, ttl_ms, result = step(current)
            if entry is not None:
                # Redis drops the key once its window closes
                pipe.set(key, self._encode(entry), px=max(1, ttl_ms + 1))
            return result

        return self._transact(key, apply)

    def delete_if_expired(self, identifier: str, now: int) -> bool:
        key = self._key(identifier)

        def apply(pipe, current):
            if current is None or now <= current.reset_time:
                return False
            pipe.delete(key)
            return True

        return self._transact(key, apply)

    def items(self) -> Iterator[Tuple[str, RateLimitEntry]]:
        for key in self.client.scan_iter(match=f"{self.prefix}*"):
            if isinstance(key, bytes):
                key = key.decode()
            identifier = key[len(self.prefix):]
            entry = self.get(identifier)
            if entry is not None:
                yield identifier, entry


class RateLimiter:
    """Fixed-window counter.

    The first request from an identifier opens a window of ``window_ms``;
    up to ``max_requests`` calls are accepted inside it and the rest are
    refused until the window closes. Windows are not aligned, so a client
    can get up to ``2 * max_requests`` calls through around a window
    boundary.
    """

    def __init__(
        self,
        window_ms: int,
        max_requests: int,
        message: Optional[str] = None,
        store=None,
        clock: Optional[Callable[[], int]] = None,
    ):
        if window_ms <= 0:
            raise ValueError("window_ms must be positive")
        if max_requests <= 0:
            raise ValueError("max_requests must be positive")
        self.window_ms = window_ms
        self.max_requests = max_requests
        self.message = message
        self._store = store if store is not None else InMemoryRateLimitStore()
        self._clock = clock or _now_ms
        self._lock = threading.Lock()

    def now(self) -> int:
        return self._clock()

    def _step(self, entry: Optional[RateLimitEntry], now: int):
        if entry is None or now > entry.reset_time:
            # First request or window expired
            return RateLimitEntry(count=1, reset_time=now + self.window_ms), self.window_ms, RateLimitResult(limited=False)

        if entry.count >= self.max_requests:
            reset_in = math.ceil((entry.reset_time - now) / 1000)
            return None, None, RateLimitResult(
                limited=True,
                reset_in=reset_in,
                message=self.message or f"Too many requests. Try again in {reset_in} seconds.",
            )

        counted = RateLimitEntry(count=entry.count + 1, reset_time=entry.reset_time)
        return counted, entry.reset_time - now, RateLimitResult(limited=False)

    def is_rate_limited(self, identifier: str) -> RateLimitResult:
        with self._lock:
            now = self._clock()
            return self._store.update(identifier, lambda entry: self._step(entry, now))

    def cleanup_expired_entries(self) -> int:
        """Drop entries whose window has closed. Returns how many were removed."""
        removed = 0
        with self._lock:
            now = self._clock()
            for identifier, entry in self._store.items():
                if now > entry.reset_time and self._store.delete_if_expired(identifier, now):
                    removed += 1
        return removed


class RateLimiterRegistry:
    """The named limiters used by the API (``auth`` and ``general``)."""

    AUTH_MESSAGE = "Too many authentication attempts. Please try again later."
    GENERAL_MESSAGE = "Too many requests. Please slow down."

    def __init__(self, auth: RateLimiter, general: RateLimiter):
        self.auth = auth
        self.general = general

    @classmethod
    def from_settings(cls, settings, redis_client=None, clock=None) -> "RateLimiterRegistry":
        def store_for(namespace):
            if redis_client is not None:
                return RedisRateLimitStore(redis_client, namespace)
            return InMemoryRateLimitStore()

        return cls(
            auth=RateLimiter(
                window_ms=settings.auth_rate_limit_window_seconds * 1000,
                max_requests=settings.auth_rate_limit_max_requests,
                message=cls.AUTH_MESSAGE,
                store=store_for("auth"),
                clock=clock,
            ),
            general=RateLimiter(
                window_ms=settings.general_rate_limit_window_seconds * 1000,
                max_requests=settings.general_rate_limit_max_requests,
                message=cls.GENERAL_MESSAGE,
                store=store_for("general"),
                clock=clock,
            ),
        )

    def limiters(self):
        return (self.auth, self.general)

    def store_status(self) -> str:
        """"ok" or "error" depending on whether the backing store answers."""
        for limiter in self.limiters():
            store = limiter._store
            if isinstance(store, RedisRateLimitStore):
                try:
                    store.client.ping()
                except RedisError as e:
                    logger.error(f"Rate limit store unreachable: {e}")
                    return "error"
        return "ok"

    def cleanup(self) -> int:
        removed = sum(limiter.cleanup_expired_entries() for limiter in self.limiters())
        if removed:
            logger.debug(f"Removed {removed} expired rate limit entries")
        return removed


def get_client_identifier(request: Request, user_id=None) -> str:
    """Stable limiter key: the account when known, else network address plus user agent."""
    if user_id:
        return f"user:{user_id}"

    forwarded = request.headers.get("x-forwarded-for")
    real_ip = request.headers.get("x-real-ip")
    first_forwarded = forwarded.split(",")[0].strip() if forwarded else ""
    client_ip = first_forwarded or real_ip or "unknown"

    user_agent = request.headers.get("user-agent") or ""
    return f"ip:{client_ip}:{user_agent[:USER_AGENT_PREFIX_LENGTH]}"


def rate_limit_response(result: RateLimitResult, now_ms: Optional[int] = None) -> JSONResponse:
    retry_after = result.reset_in if result.reset_in is not None else 60
    now_ms = now_ms if now_ms is not None else _now_ms()
    return JSONResponse(
        status_code=429,
        content={"error": result.message, "retryAfter": retry_after},
        headers={
            "Retry-After": str(retry_after),
            "X-RateLimit-Reset": str(now_ms + retry_after * 1000),
        },
    )


def check_rate_limit(limiter: RateLimiter, identifier: str) -> Optional[JSONResponse]:
    """Count one request; returns the 429 response to send when the caller is over the limit."""
    result = limiter.is_rate_limited(identifier)
    if not result.limited:
        return None
    logger.warning(f"Rate limit exceeded for {identifier} (retry in {result.reset_in}s)")
    return rate_limit_response(result, limiter.now())


def get_rate_limiters(request: Request) -> RateLimiterRegistry:
    """FastAPI dependency returning the app's limiter registry."""
    return request.app.state.rate_limiters
