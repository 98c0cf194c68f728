# Copyright (C) 2024 uitdeITP Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Pytest fixtures. Tests run against in-memory SQLite; SMS and the clock are faked."""

import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["RATE_LIMIT_BACKEND"] = "memory"
os.environ["NOTIFYHUB_URL"] = ""
os.environ["NOTIFYHUB_API_KEY"] = ""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from uitdeitp_server.auth import create_access_token
from uitdeitp_server.config import RateLimitRule, settings
from uitdeitp_server.database import get_db
from uitdeitp_server.errors import DeliveryError
from uitdeitp_server.main import app
from uitdeitp_server.models import Base
from uitdeitp_server.rate_limit import MemoryRateLimiter, RateLimiters, get_rate_limiters
from uitdeitp_server.services.sms import get_sms_sender
from uitdeitp_server.services.verification import VerificationService
from uitdeitp_server.services.verification_store import VerificationStore


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeClock:
    """Callable clock for stores and limiters; advance() moves time forward."""

    def __init__(self) -> None:
        self.now = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def timestamp(self) -> float:
        return self.now.timestamp()

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@dataclass
class SentSms:
    phone: str
    code: str
    sender_name: str
    expiry_minutes: int


class RecordingSms:
    """SMS channel that records messages instead of sending them."""

    def __init__(self) -> None:
        self.sent: list[SentSms] = []
        self.fail = False

    async def send_verification_code(self, phone, code, *, sender_name, expiry_minutes):
        if self.fail:
            raise DeliveryError()
        self.sent.append(SentSms(phone, code, sender_name, expiry_minutes))

    @property
    def last_code(self) -> str:
        return self.sent[-1].code


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sms():
    return RecordingSms()


@pytest.fixture
def limiters(clock):
    rules = settings.rate_limits
    return RateLimiters(
        send_code=MemoryRateLimiter(rules.send_code, clock=clock.timestamp),
        validate_code=MemoryRateLimiter(rules.validate_code, clock=clock.timestamp),
        kiosk=MemoryRateLimiter(rules.kiosk, clock=clock.timestamp),
        api=MemoryRateLimiter(RateLimitRule(max_requests=100, window_seconds=900), clock=clock.timestamp),
    )


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def store(db, clock):
    return VerificationStore(db, ttl=timedelta(minutes=10), max_attempts=5, clock=clock)


@pytest.fixture
def service(store, sms, limiters):
    return VerificationService(store, sms, limiters, settings)


@pytest.fixture
async def client(session_maker, sms, limiters):
    async def override_get_db():
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_sms_sender] = lambda: sms
    app.dependency_overrides[get_rate_limiters] = lambda: limiters
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    token = create_access_token({"sub": "42"})
    return {"Authorization": f"Bearer {token}"}
