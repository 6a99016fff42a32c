"""Sliding-window rate limiting for API endpoints.

Requests are counted per identifier (``user_<id>`` or a truncated client IP)
over a rolling window. Counts live in process memory by default; when
``REDIS_URL`` is configured they live in Redis sorted sets so every worker
shares the same limits.
"""

import threading
import time
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Callable

from fastapi import HTTPException, Request
from redis import Redis

from app.core.config import get_settings
from app.core.logging import get_logger

logger = get_logger(__name__)

ROLE_MULTIPLIERS: dict[str, int] = {
    "USER": 1,
    "CONTRIBUTOR": 5,
    "ADMIN": 50,
    "SUPER_ADMIN": 100,
}


@dataclass
class RateLimitResult:
    success: bool
    remaining: int
    reset_time: float | None = None
    message: str | None = None


# =============================================================================
# Backends
# =============================================================================


class InMemoryWindow:
    """Per-identifier request timestamps kept in process memory."""

    def __init__(self):
        self._requests: dict[str, list[float]] = defaultdict(list)
        self._lock = threading.Lock()

    def hit(self, key: str, now: float, window: float, limit: int) -> tuple[bool, int, float | None]:
        """Record a request if under ``limit``. Returns (allowed, remaining, reset_time)."""
        with self._lock:
            recent = [t for t in self._requests[key] if t > now - window]
            if len(recent) >= limit:
                self._requests[key] = recent
                return False, 0, recent[0] + window
            recent.append(now)
            self._requests[key] = recent
            return True, limit - len(recent), recent[0] + window

    def reset(self, key: str) -> None:
        with self._lock:
            self._requests.pop(key, None)


class RedisWindow:
    """
    Sliding window stored as a Redis sorted set scored by timestamp.

    Trim, add and count run in one MULTI/EXEC transaction, so concurrent
    workers always see each other's requests. A request that pushes the
    window over the limit removes its own entry again.
    """

    def __init__(self, client: Redis):
        self.client = client

    def hit(self, key: str, now: float, window: float, limit: int) -> tuple[bool, int, float | None]:
        member = f"{now}:{uuid.uuid4().hex[:8]}"

        pipe = self.client.pipeline(transaction=True)
        pipe.zremrangebyscore(key, 0, now - window)
        pipe.zadd(key, {member: now})
        pipe.zcard(key)
        pipe.zrange(key, 0, 0, withscores=True)
        pipe.expire(key, int(window) + 1)
        _, _, count, oldest, _ = pipe.execute()

        reset_time = (oldest[0][1] if oldest else now) + window
        if count > limit:
            self.client.zrem(key, member)
            return False, 0, reset_time
        return True, limit - count, reset_time

    def reset(self, key: str) -> None:
        self.client.delete(key)


@lru_cache(maxsize=1)
def get_redis() -> Redis | None:
    """Redis client when REDIS_URL is configured, otherwise None."""
    url = get_settings().REDIS_URL
    if not url:
        return None
    return Redis.from_url(url, socket_timeout=2)


# =============================================================================
# Limiter
# =============================================================================


@dataclass
class RateLimiter:
    """
    Sliding-window limiter.

    ``max_requests`` is the base allowance per ``window_seconds`` for the
    USER role; other roles multiply it. Denied requests are not recorded, so
    a client that keeps retrying is let through as soon as its oldest
    request leaves the window.
    """

    name: str
    window_seconds: float
    max_requests: int
    message: str = "Too many requests. Please slow down."
    exempt: list[str] = field(default_factory=list)
    clock: Callable[[], float] = time.time
    memory: InMemoryWindow = field(default_factory=InMemoryWindow)
    redis: Redis | None = None
    use_redis: bool = True

    def _key(self, identifier: str) -> str:
        return f"ratelimit:{self.name}:{identifier}"

    def _redis_client(self) -> Redis | None:
        if self.redis is not None:
            return self.redis
        return get_redis() if self.use_redis else None

    def is_exempt(self, identifier: str) -> bool:
        if identifier in self.exempt:
            return True
        exempt_users = get_settings().exempt_users
        bare = identifier.removeprefix("user_")
        return identifier in exempt_users or bare in exempt_users

    def check(self, identifier: str, role: str | None = None) -> RateLimitResult:
        limit = self.max_requests * ROLE_MULTIPLIERS.get((role or "USER").upper(), 1)

        if self.is_exempt(identifier):
            return RateLimitResult(success=True, remaining=limit)

        now = self.clock()
        key = self._key(identifier)
        client = self._redis_client()

        if client is not None:
            try:
                allowed, remaining, reset_time = RedisWindow(client).hit(key, now, self.window_seconds, limit)
            except Exception as e:
                logger.warning(f"Redis rate limit check failed, using in-memory window: {e}")
                allowed, remaining, reset_time = self.memory.hit(key, now, self.window_seconds, limit)
        else:
            allowed, remaining, reset_time = self.memory.hit(key, now, self.window_seconds, limit)

        if not allowed:
            logger.warning(
                f"Rate limit exceeded for {identifier} on {self.name}",
                extra={"extra_data": {"limit": limit, "window": self.window_seconds}},
            )
            return RateLimitResult(success=False, remaining=0, reset_time=reset_time, message=self.message)

        return RateLimitResult(success=True, remaining=remaining, reset_time=reset_time)

    def enforce(self, identifier: str, role: str | None = None) -> RateLimitResult:
        """
        Check the limit and raise if exceeded.

        Raises:
            HTTPException: 429 with a Retry-After header
        """
        result = self.check(identifier, role)
        if not result.success:
            retry_after = max(int((result.reset_time or self.clock()) - self.clock()) + 1, 1)
            raise HTTPException(
                status_code=429,
                detail=result.message,
                headers={"Retry-After": str(retry_after)},
            )
        return result

    def reset(self, identifier: str) -> None:
        key = self._key(identifier)
        self.memory.reset(key)
        client = self._redis_client()
        if client is not None:
            try:
                RedisWindow(client).reset(key)
            except Exception as e:
                logger.warning(f"Failed to reset Redis rate limit for {identifier}: {e}")
        logger.info(f"Rate limit reset for {identifier} on {self.name}")


# Global rate limiter instances
chat_rate_limiter = RateLimiter(
    name="chat",
    window_seconds=5 * 60,
    max_requests=30,
    message="Too many chat requests. Please wait a few minutes before asking another question.",
)
upload_rate_limiter = RateLimiter(
    name="upload",
    window_seconds=60 * 60,
    max_requests=100,
    message="Upload limit exceeded. You can upload up to 100 files per hour.",
)
general_rate_limiter = RateLimiter(
    name="general",
    window_seconds=15 * 60,
    max_requests=100,
    message="Too many requests. Please slow down.",
)
invitation_rate_limiter = RateLimiter(
    name="invitation",
    window_seconds=60 * 60,
    max_requests=10,
    message="Invitation limit exceeded. Try again later.",
)


def backend_name() -> str:
    return "redis" if get_redis() is not None else "memory"


# =============================================================================
# Identifiers
# =============================================================================


def truncate_ip(ip: str) -> str:
    """Drop the host part of an address: IPv4 keeps two octets, others lose their last 4 chars."""
    if ip == "unknown":
        return ip
    parts = ip.split(".")
    if len(parts) == 4:
        return f"{parts[0]}.{parts[1]}.x.x"
    if len(ip) > 4:
        return ip[:-4] + "xxxx"
    return "xxxx"


def get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return "unknown"


def get_identifier(request: Request, user_id: str | None = None) -> str:
    """Rate limit identifier: the user when authenticated, else a truncated IP."""
    if user_id:
        return f"user_{user_id}"
    return f"ip_{truncate_ip(get_client_ip(request))}"
