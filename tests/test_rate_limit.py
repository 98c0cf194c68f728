# Copyright (C) 2024 uitdeITP Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Fixed-window rate limiters (memory and Redis)."""

import pytest
from starlette.requests import Request

from uitdeitp_server.config import RateLimitRule
from uitdeitp_server.rate_limit import (
    MemoryRateLimiter,
    RateLimitDecision,
    RedisRateLimiter,
    client_identifier,
    rate_limit_headers,
)

pytestmark = pytest.mark.anyio

RULE = RateLimitRule(max_requests=3, window_seconds=60)


class TickingClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.t = start

    def __call__(self) -> float:
        return self.t


async def test_fourth_call_in_window_is_rejected():
    clock = TickingClock()
    limiter = MemoryRateLimiter(RULE, clock=clock)
    decisions = [await limiter.check("phone:+40712345678") for _ in range(4)]
    assert [d.allowed for d in decisions] == [True, True, True, False]
    assert [d.remaining for d in decisions] == [2, 1, 0, 0]
    assert decisions[-1].reset_at == 1_060.0
    assert decisions[-1].retry_after == 60
    assert decisions[0].retry_after == 0


async def test_window_resets_after_it_elapses():
    clock = TickingClock()
    limiter = MemoryRateLimiter(RULE, clock=clock)
    for _ in range(3):
        await limiter.check("k")
    clock.t += 30
    assert not (await limiter.check("k")).allowed
    clock.t += 30
    decision = await limiter.check("k")
    assert decision.allowed
    assert decision.remaining == 2
    assert decision.reset_at == 1_120.0


async def test_keys_are_independent():
    limiter = MemoryRateLimiter(RateLimitRule(max_requests=1, window_seconds=60), clock=TickingClock())
    assert (await limiter.check("a")).allowed
    assert (await limiter.check("b")).allowed
    assert not (await limiter.check("a")).allowed


async def test_expired_windows_are_pruned():
    clock = TickingClock()
    limiter = MemoryRateLimiter(RULE, clock=clock)
    limiter.PRUNE_THRESHOLD = 2
    await limiter.check("a")
    await limiter.check("b")
    clock.t += 61
    await limiter.check("c")
    assert set(limiter._windows) == {"c"}


class FakePipeline:
    def __init__(self, redis: "FakeRedis") -> None:
        self.redis = redis
        self.ops = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def set(self, key, value, px=None, nx=False):
        self.ops.append(("set", key, value, px, nx))

    def incr(self, key):
        self.ops.append(("incr", key))

    def pttl(self, key):
        self.ops.append(("pttl", key))

    async def execute(self):
        return [self.redis.apply(op) for op in self.ops]


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the limiter's MULTI block, with a manual clock."""

    def __init__(self) -> None:
        self.now_ms = 0
        self.data: dict[str, list[int]] = {}  # key -> [value, expires_at_ms]

    def pipeline(self, transaction=True):
        return FakePipeline(self)

    def _live(self, key):
        entry = self.data.get(key)
        if entry and entry[1] <= self.now_ms:
            del self.data[key]
            return None
        return entry

    def apply(self, op):
        name, key = op[0], op[1]
        entry = self._live(key)
        if name == "set":
            _, _, value, px, nx = op
            if nx and entry:
                return None
            self.data[key] = [int(value), self.now_ms + px]
            return True
        if name == "incr":
            entry[0] += 1
            return entry[0]
        if name == "pttl":
            return entry[1] - self.now_ms if entry else -2
        raise AssertionError(name)


async def test_redis_limiter_shares_fixed_window():
    redis = FakeRedis()
    first = RedisRateLimiter(redis, RULE, "send_code", clock=lambda: redis.now_ms / 1000)
    second = RedisRateLimiter(redis, RULE, "send_code", clock=lambda: redis.now_ms / 1000)
    assert (await first.check("phone:1")).allowed
    assert (await second.check("phone:1")).allowed
    third = await first.check("phone:1")
    assert third.allowed and third.remaining == 0
    denied = await second.check("phone:1")
    assert not denied.allowed
    assert denied.reset_at == 60.0
    assert denied.retry_after == 60
    redis.now_ms = 60_000
    assert (await first.check("phone:1")).allowed


async def test_redis_limiter_namespaces_call_sites():
    redis = FakeRedis()
    rule = RateLimitRule(max_requests=1, window_seconds=60)
    send = RedisRateLimiter(redis, rule, "send_code")
    kiosk = RedisRateLimiter(redis, rule, "kiosk")
    assert (await send.check("x")).allowed
    assert (await kiosk.check("x")).allowed
    assert not (await send.check("x")).allowed


def _request(headers: dict[str, str] | None = None) -> Request:
    scope = {
        "type": "http",
        "method": "POST",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": ("10.0.0.9", 5000),
    }
    return Request(scope)


def test_client_identifier_precedence():
    req = _request({"X-Forwarded-For": "203.0.113.5, 10.0.0.1"})
    assert client_identifier(req, user_id=7, station_id=3) == "user:7"
    assert client_identifier(req, station_id=3) == "station:3"
    assert client_identifier(req) == "ip:203.0.113.5"
    assert client_identifier(_request({"X-Real-IP": "198.51.100.2"})) == "ip:198.51.100.2"
    assert client_identifier(_request()) == "ip:10.0.0.9"


def test_rate_limit_headers():
    allowed = rate_limit_headers(RateLimitDecision(True, 3, 2, 1_700_000_000.2))
    assert allowed == {
        "X-RateLimit-Limit": "3",
        "X-RateLimit-Remaining": "2",
        "X-RateLimit-Reset": "1700000001",
    }
    denied = rate_limit_headers(RateLimitDecision(False, 3, 0, 0.0))
    assert denied["Retry-After"] == "1"


async def test_retry_after_follows_limiter_clock():
    # A clock far from wall time: Retry-After must still be the window remainder
    clock = TickingClock(start=50.0)
    limiter = MemoryRateLimiter(RULE, clock=clock)
    for _ in range(3):
        await limiter.check("k")
    clock.t += 15.5
    denied = await limiter.check("k")
    assert rate_limit_headers(denied)["Retry-After"] == "45"
    assert rate_limit_headers(denied)["X-RateLimit-Reset"] == "110"
