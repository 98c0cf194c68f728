# Copyright (C) 2024 uitdeITP Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Kiosk phone verification API (anonymous, station tablets)."""

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from uitdeitp_server.api.schemas import KioskSendRequest, KioskVerifyRequest, KioskVerifyResponse, SendCodeResponse
from uitdeitp_server.database import get_db
from uitdeitp_server.errors import RateLimitExceeded, StationNotFound, StorageError
from uitdeitp_server.models import KioskStation, VerificationPurpose
from uitdeitp_server.rate_limit import (
    RateLimitDecision,
    RateLimiters,
    client_identifier,
    get_rate_limiters,
    rate_limit_headers,
)
from uitdeitp_server.services.verification import VerificationService, get_verification_service

router = APIRouter(prefix="/verification", tags=["kiosk"])


async def get_active_station(slug: str, db: AsyncSession) -> KioskStation:
    """Load an active station by slug; raise if unknown or disabled."""
    try:
        result = await db.execute(
            select(KioskStation).where(KioskStation.slug == slug, KioskStation.is_active.is_(True))
        )
    except SQLAlchemyError as e:
        raise StorageError() from e
    station = result.scalar_one_or_none()
    if not station:
        raise StationNotFound()
    return station


async def _check_kiosk_limit(
    request: Request, limiters: RateLimiters, station: KioskStation | None = None
) -> RateLimitDecision:
    """Kiosk rule, keyed by station when known, else by client IP (also guards slug lookups)."""
    decision = await limiters.kiosk.check(
        client_identifier(request, station_id=station.id if station else None)
    )
    if not decision.allowed:
        raise RateLimitExceeded(decision)
    return decision


@router.post("/send", response_model=SendCodeResponse)
async def kiosk_send(
    data: KioskSendRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
    service: VerificationService = Depends(get_verification_service),
    limiters: RateLimiters = Depends(get_rate_limiters),
) -> SendCodeResponse:
    """Send a code from a station tablet."""
    await _check_kiosk_limit(request, limiters)
    station = await get_active_station(data.station_slug, db)
    await _check_kiosk_limit(request, limiters, station)
    result = await service.send_code(data.phone, VerificationPurpose.KIOSK, station=station)
    response.headers.update(rate_limit_headers(result.rate_limit))
    return SendCodeResponse(verification_id=result.verification_id, expires_in=result.expires_in)


@router.post("/resend", response_model=SendCodeResponse)
async def kiosk_resend(
    data: KioskSendRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
    service: VerificationService = Depends(get_verification_service),
    limiters: RateLimiters = Depends(get_rate_limiters),
) -> SendCodeResponse:
    """Send a new code; the previous one stops working."""
    await _check_kiosk_limit(request, limiters)
    station = await get_active_station(data.station_slug, db)
    await _check_kiosk_limit(request, limiters, station)
    result = await service.resend_code(data.phone, VerificationPurpose.KIOSK, station=station)
    response.headers.update(rate_limit_headers(result.rate_limit))
    return SendCodeResponse(verification_id=result.verification_id, expires_in=result.expires_in)


@router.post("/verify", response_model=KioskVerifyResponse)
async def kiosk_verify(
    data: KioskVerifyRequest,
    request: Request,
    response: Response,
    service: VerificationService = Depends(get_verification_service),
    limiters: RateLimiters = Depends(get_rate_limiters),
) -> KioskVerifyResponse:
    decision = await _check_kiosk_limit(request, limiters)
    await service.validate_code(data.phone, VerificationPurpose.KIOSK, data.code)
    response.headers.update(rate_limit_headers(decision))
    return KioskVerifyResponse()
