# Copyright (C) 2024 uitdeITP Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Fixed-window rate limiting, per call site, in memory or shared through Redis."""

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from functools import lru_cache
from typing import Protocol

from fastapi import Request
from redis import asyncio as aioredis
from redis.exceptions import RedisError

from uitdeitp_server.config import RateLimitRule, Settings, settings
from uitdeitp_server.errors import StorageError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float  # epoch seconds when the current window ends
    retry_after: int = 0  # whole seconds until the window ends; set on denials


def _seconds_until(reset_at: float, now: float) -> int:
    return max(1, math.ceil(reset_at - now))


class RateLimiter(Protocol):
    async def check(self, key: str) -> RateLimitDecision: ...


class MemoryRateLimiter:
    """
    Process-local counters. Only correct for a single instance; use
    RedisRateLimiter when the service is scaled out.
    """

    # Expired windows are swept once the table grows past this many keys
    PRUNE_THRESHOLD = 10_000

    def __init__(self, rule: RateLimitRule, clock: Callable[[], float] = time.time) -> None:
        self.rule = rule
        self._clock = clock
        # key -> [count, reset_at]
        self._windows: dict[str, list[float]] = {}

    async def check(self, key: str) -> RateLimitDecision:
        # No await between read and write: safe under the event loop.
        now = self._clock()
        window = self._windows.get(key)
        if window is None or now >= window[1]:
            if len(self._windows) >= self.PRUNE_THRESHOLD:
                self._prune(now)
            window = [0, now + self.rule.window_seconds]
            self._windows[key] = window
        limit = self.rule.max_requests
        if window[0] >= limit:
            return RateLimitDecision(False, limit, 0, window[1], _seconds_until(window[1], now))
        window[0] += 1
        return RateLimitDecision(True, limit, int(limit - window[0]), window[1])

    def _prune(self, now: float) -> None:
        expired = [k for k, (_, reset_at) in self._windows.items() if now >= reset_at]
        for k in expired:
            del self._windows[k]


class RedisRateLimiter:
    """Counters shared by all instances: SET NX PX + INCR + PTTL in one MULTI."""

    def __init__(
        self,
        redis: aioredis.Redis,
        rule: RateLimitRule,
        namespace: str,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.redis = redis
        self.rule = rule
        self.namespace = namespace
        self._clock = clock

    async def check(self, key: str) -> RateLimitDecision:
        redis_key = f"ratelimit:{self.namespace}:{key}"
        window_ms = int(self.rule.window_seconds * 1000)
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.set(redis_key, 0, px=window_ms, nx=True)
                pipe.incr(redis_key)
                pipe.pttl(redis_key)
                _, count, ttl_ms = await pipe.execute()
        except RedisError as e:
            logger.error("Rate limit store unavailable: %s", e)
            raise StorageError() from e
        if ttl_ms is None or ttl_ms < 0:
            ttl_ms = window_ms
        limit = self.rule.max_requests
        now = self._clock()
        reset_at = now + ttl_ms / 1000
        allowed = count <= limit
        retry_after = 0 if allowed else _seconds_until(reset_at, now)
        return RateLimitDecision(allowed, limit, max(0, limit - count), reset_at, retry_after)


@dataclass
class RateLimiters:
    """One limiter per call site, so counts are never shared between them."""

    send_code: RateLimiter
    validate_code: RateLimiter
    kiosk: RateLimiter
    api: RateLimiter


def build_rate_limiters(config: Settings) -> RateLimiters:
    rules = config.rate_limits
    if config.rate_limit_backend == "redis":
        if not config.redis_url:
            raise RuntimeError("RATE_LIMIT_BACKEND=redis requires REDIS_URL")
        client = aioredis.from_url(config.redis_url, decode_responses=True)
        return RateLimiters(
            send_code=RedisRateLimiter(client, rules.send_code, "send_code"),
            validate_code=RedisRateLimiter(client, rules.validate_code, "validate_code"),
            kiosk=RedisRateLimiter(client, rules.kiosk, "kiosk"),
            api=RedisRateLimiter(client, rules.api, "api"),
        )
    return RateLimiters(
        send_code=MemoryRateLimiter(rules.send_code),
        validate_code=MemoryRateLimiter(rules.validate_code),
        kiosk=MemoryRateLimiter(rules.kiosk),
        api=MemoryRateLimiter(rules.api),
    )


@lru_cache
def get_rate_limiters() -> RateLimiters:
    """FastAPI dependency: process-wide limiters resolved from settings at first use."""
    return build_rate_limiters(settings)


def client_identifier(request: Request, user_id: int | None = None, station_id: int | None = None) -> str:
    """Rate-limit key: authenticated user, then kiosk station, then client IP (X-Forwarded-For first)."""
    if user_id is not None:
        return f"user:{user_id}"
    if station_id is not None:
        return f"station:{station_id}"
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return f"ip:{forwarded.split(',')[0].strip()}"
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return f"ip:{real_ip.strip()}"
    if request.client:
        return f"ip:{request.client.host or 'unknown'}"
    return "ip:unknown"


def rate_limit_headers(decision: RateLimitDecision) -> dict[str, str]:
    headers = {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(math.ceil(decision.reset_at)),
    }
    if not decision.allowed:
        headers["Retry-After"] = str(max(1, decision.retry_after))
    return headers
