# Copyright (C) 2024 uitdeITP Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Phone verification: send a code, validate it, mark the phone verified."""

import logging
import re
from dataclasses import dataclass
from datetime import timedelta

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from uitdeitp_server.config import Settings, settings
from uitdeitp_server.database import get_db
from uitdeitp_server.errors import (
    AttemptsExhausted,
    CodeNotFound,
    DeliveryError,
    IncorrectCode,
    RateLimitExceeded,
    ValidationError,
)
from uitdeitp_server.models import KioskStation, VerificationPurpose
from uitdeitp_server.rate_limit import RateLimitDecision, RateLimiters, get_rate_limiters
from uitdeitp_server.services import profiles
from uitdeitp_server.services.codes import codes_match
from uitdeitp_server.services.phone import mask_phone, normalize_phone
from uitdeitp_server.services.sms import SmsSender, get_sms_sender
from uitdeitp_server.services.verification_store import VerificationState, VerificationStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SendCodeResult:
    verification_id: str
    expires_in: int  # seconds
    rate_limit: RateLimitDecision


class VerificationService:
    """
    State per (phone, purpose): NONE -> ACTIVE -> CONSUMED | EXPIRED | ATTEMPTS_EXHAUSTED.

    A new send_code always restarts at ACTIVE and supersedes the previous code.
    Store changes are committed before any failure is raised, so failed
    attempts count even though the request ends in an error.
    """

    def __init__(
        self,
        store: VerificationStore,
        sms: SmsSender,
        limiters: RateLimiters,
        config: Settings = settings,
    ) -> None:
        self.store = store
        self.sms = sms
        self.limiters = limiters
        self.config = config
        self._code_re = re.compile(rf"^\d{{{config.verification_code_length}}}$", re.ASCII)

    async def send_code(
        self,
        phone: str,
        purpose: VerificationPurpose | str,
        owner_id: int | None = None,
        *,
        station: KioskStation | None = None,
    ) -> SendCodeResult:
        """Issue a code and send it by SMS. Returns the verification handle, never the code."""
        canonical = normalize_phone(phone)
        purpose = _parse_purpose(purpose)

        decision = await self.limiters.send_code.check(f"phone:{canonical}")
        if not decision.allowed:
            logger.info("SMS limit reached for %s", mask_phone(canonical))
            raise RateLimitExceeded(decision, "Too many codes requested. Please try again in an hour.")

        if owner_id is not None:
            await profiles.ensure_profile(self.store.db, owner_id)
        record = await self.store.issue(
            canonical,
            purpose,
            owner_id=owner_id,
            station_id=station.id if station else None,
        )
        await self.store.commit()

        sender_name = self.config.sms_default_sender
        if station is not None:
            sender_name = station.sms_sender_name or station.name
        try:
            await self.sms.send_verification_code(
                canonical,
                record.code,
                sender_name=sender_name,
                expiry_minutes=self.config.verification_code_ttl_minutes,
            )
        except DeliveryError as e:
            # The record stays active: the user may still enter a code that arrived late, or resend.
            logger.warning("SMS delivery failed for %s (verification %s)", mask_phone(canonical), record.id)
            raise DeliveryError(e.message, verification_id=record.id) from e

        logger.info(
            "Verification code sent to %s purpose=%s id=%s",
            mask_phone(canonical), purpose.value, record.id,
        )
        return SendCodeResult(
            verification_id=record.id,
            expires_in=int(self.store.ttl.total_seconds()),
            rate_limit=decision,
        )

    async def resend_code(
        self,
        phone: str,
        purpose: VerificationPurpose | str,
        owner_id: int | None = None,
        *,
        station: KioskStation | None = None,
    ) -> SendCodeResult:
        # Issuing already revokes the previous code for the pair.
        return await self.send_code(phone, purpose, owner_id, station=station)

    async def validate_code(
        self,
        phone: str,
        purpose: VerificationPurpose | str,
        code: str,
        owner_id: int | None = None,
    ) -> None:
        """Check a submitted code. Returns on success; raises a VerificationError otherwise."""
        canonical = normalize_phone(phone)
        purpose = _parse_purpose(purpose)
        code = (code or "").strip()
        if not self._code_re.match(code):
            raise ValidationError(f"The code must have {self.config.verification_code_length} digits.")

        record = await self.store.find_active(canonical, purpose)
        if record is None:
            await self._raise_inactive(canonical, purpose)

        if not codes_match(code, record.code):
            attempts = await self.store.record_attempt(record)
            await self.store.commit()
            if attempts is None:
                raise CodeNotFound()
            attempts_left = self.store.max_attempts - attempts
            logger.info(
                "Incorrect code for %s id=%s (%d attempts left)",
                mask_phone(canonical), record.id, attempts_left,
            )
            if attempts_left <= 0:
                raise AttemptsExhausted()
            raise IncorrectCode(attempts_left)

        if not await self.store.consume(record):
            # Consumed or exhausted by a concurrent request.
            raise CodeNotFound()
        if owner_id is not None:
            await profiles.mark_phone_verified(self.store.db, owner_id, canonical)
        await self.store.commit()
        logger.info("Phone %s verified purpose=%s id=%s", mask_phone(canonical), purpose.value, record.id)

    async def is_phone_verified(self, user_id: int) -> bool:
        return await profiles.is_phone_verified(self.store.db, user_id)

    async def _raise_inactive(self, phone: str, purpose: VerificationPurpose) -> None:
        latest = await self.store.find_latest(phone, purpose)
        state = self.store.state(latest) if latest is not None else None
        if state is VerificationState.ATTEMPTS_EXHAUSTED:
            raise AttemptsExhausted()
        if state is VerificationState.EXPIRED:
            raise CodeNotFound("The code has expired. Please request a new code.")
        raise CodeNotFound()


def _parse_purpose(purpose: VerificationPurpose | str) -> VerificationPurpose:
    try:
        return VerificationPurpose(purpose)
    except ValueError:
        raise ValidationError(f"Unknown verification purpose: {purpose}") from None


def get_verification_service(
    db: AsyncSession = Depends(get_db),
    sms: SmsSender = Depends(get_sms_sender),
    limiters: RateLimiters = Depends(get_rate_limiters),
) -> VerificationService:
    """FastAPI dependency: a service bound to the request's database session."""
    store = VerificationStore(
        db,
        ttl=timedelta(minutes=settings.verification_code_ttl_minutes),
        max_attempts=settings.verification_max_attempts,
        code_length=settings.verification_code_length,
    )
    return VerificationService(store, sms, limiters, settings)
