# Copyright (C) 2024 uitdeITP Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Persistence for phone verification codes.

Every state change is a single guarded UPDATE, so concurrent requests cannot
both spend the last attempt or both consume the same code.
"""

import enum
import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy import ColumnElement, and_, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from uitdeitp_server.errors import StorageError
from uitdeitp_server.models import PhoneVerification, VerificationPurpose
from uitdeitp_server.models.timestamp import as_utc, utcnow
from uitdeitp_server.services.codes import generate_code
from uitdeitp_server.services.phone import mask_phone

logger = logging.getLogger(__name__)


class VerificationState(str, enum.Enum):
    ACTIVE = "active"
    CONSUMED = "consumed"
    REVOKED = "revoked"
    EXPIRED = "expired"
    ATTEMPTS_EXHAUSTED = "attempts_exhausted"


def record_state(record: PhoneVerification, now: datetime, max_attempts: int) -> VerificationState:
    """Lazily derived state of a record. Python twin of active_clause()."""
    if record.consumed:
        return VerificationState.CONSUMED
    if record.revoked_at is not None:
        return VerificationState.REVOKED
    if as_utc(record.expires_at) <= now:
        return VerificationState.EXPIRED
    if record.attempts >= max_attempts:
        return VerificationState.ATTEMPTS_EXHAUSTED
    return VerificationState.ACTIVE


def is_active(record: PhoneVerification, now: datetime, max_attempts: int) -> bool:
    return record_state(record, now, max_attempts) is VerificationState.ACTIVE


def active_clause(now: datetime, max_attempts: int) -> ColumnElement[bool]:
    """SQL predicate for an active record. Must agree with record_state()."""
    return and_(
        PhoneVerification.consumed.is_(False),
        PhoneVerification.revoked_at.is_(None),
        PhoneVerification.expires_at > now,
        PhoneVerification.attempts < max_attempts,
    )


class VerificationStore:
    """Verification records for one request's database session."""

    def __init__(
        self,
        db: AsyncSession,
        *,
        ttl: timedelta,
        max_attempts: int,
        code_length: int = 6,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.db = db
        self.ttl = ttl
        self.max_attempts = max_attempts
        self.code_length = code_length
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    def state(self, record: PhoneVerification) -> VerificationState:
        return record_state(record, self.now(), self.max_attempts)

    async def issue(
        self,
        phone: str,
        purpose: VerificationPurpose,
        *,
        owner_id: int | None = None,
        station_id: int | None = None,
    ) -> PhoneVerification:
        """Revoke any open code for (phone, purpose) and create a fresh one. Not committed."""
        now = self.now()
        try:
            await self.db.execute(
                update(PhoneVerification)
                .where(
                    PhoneVerification.phone_number == phone,
                    PhoneVerification.purpose == purpose.value,
                    PhoneVerification.consumed.is_(False),
                    PhoneVerification.revoked_at.is_(None),
                )
                .values(revoked_at=now)
                .execution_options(synchronize_session=False)
            )
            record = PhoneVerification(
                phone_number=phone,
                code=generate_code(self.code_length),
                purpose=purpose.value,
                created_at=now,
                expires_at=now + self.ttl,
                attempts=0,
                consumed=False,
                owner_id=owner_id,
                station_id=station_id,
            )
            self.db.add(record)
            await self.db.flush()
        except IntegrityError as e:
            # Another request issued a code for the same pair between our revoke and insert.
            logger.warning("Concurrent issue for %s purpose=%s", mask_phone(phone), purpose.value)
            raise StorageError() from e
        except SQLAlchemyError as e:
            logger.error("Could not issue verification code: %s", e)
            raise StorageError() from e
        return record

    async def find_active(self, phone: str, purpose: VerificationPurpose) -> PhoneVerification | None:
        """Current usable record for (phone, purpose), or None."""
        stmt = (
            select(PhoneVerification)
            .where(
                PhoneVerification.phone_number == phone,
                PhoneVerification.purpose == purpose.value,
                active_clause(self.now(), self.max_attempts),
            )
            .order_by(PhoneVerification.created_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        try:
            result = await self.db.execute(stmt)
        except SQLAlchemyError as e:
            logger.error("Could not load verification code: %s", e)
            raise StorageError() from e
        return result.scalar_one_or_none()

    async def find_latest(self, phone: str, purpose: VerificationPurpose) -> PhoneVerification | None:
        """Most recent unrevoked record for (phone, purpose), usable or not."""
        stmt = (
            select(PhoneVerification)
            .where(
                PhoneVerification.phone_number == phone,
                PhoneVerification.purpose == purpose.value,
                PhoneVerification.revoked_at.is_(None),
            )
            .order_by(PhoneVerification.created_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        try:
            result = await self.db.execute(stmt)
        except SQLAlchemyError as e:
            logger.error("Could not load verification code: %s", e)
            raise StorageError() from e
        return result.scalar_one_or_none()

    async def get(self, verification_id: str) -> PhoneVerification | None:
        try:
            return await self.db.get(PhoneVerification, verification_id, populate_existing=True)
        except SQLAlchemyError as e:
            raise StorageError() from e

    async def record_attempt(self, record: PhoneVerification) -> int | None:
        """
        Count a failed attempt. Returns the new attempt count, or None when the
        record was no longer open (consumed or already at the cap). Not committed.
        """
        stmt = (
            update(PhoneVerification)
            .where(
                PhoneVerification.id == record.id,
                PhoneVerification.consumed.is_(False),
                PhoneVerification.attempts < self.max_attempts,
            )
            .values(attempts=PhoneVerification.attempts + 1)
            .returning(PhoneVerification.attempts)
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.db.execute(stmt)
        except SQLAlchemyError as e:
            logger.error("Could not record verification attempt: %s", e)
            raise StorageError() from e
        attempts = result.scalar_one_or_none()
        if attempts is not None:
            set_committed_value(record, "attempts", attempts)
        return attempts

    async def consume(self, record: PhoneVerification) -> bool:
        """Mark an active record consumed. False (no change) if it was not active anymore. Not committed."""
        now = self.now()
        stmt = (
            update(PhoneVerification)
            .where(PhoneVerification.id == record.id, active_clause(now, self.max_attempts))
            .values(consumed=True, consumed_at=now)
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.db.execute(stmt)
        except SQLAlchemyError as e:
            logger.error("Could not consume verification code: %s", e)
            raise StorageError() from e
        if result.rowcount != 1:
            return False
        set_committed_value(record, "consumed", True)
        set_committed_value(record, "consumed_at", now)
        return True

    async def count_recent(self, phone: str, since: datetime) -> int:
        """Codes issued to a phone since the given time, across purposes."""
        stmt = select(func.count()).select_from(PhoneVerification).where(
            PhoneVerification.phone_number == phone,
            PhoneVerification.created_at >= since,
        )
        try:
            return (await self.db.scalar(stmt)) or 0
        except SQLAlchemyError as e:
            raise StorageError() from e

    async def commit(self) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            logger.error("Could not commit verification changes: %s", e)
            await self.db.rollback()
            raise StorageError() from e
