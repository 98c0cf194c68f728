# Copyright (C) 2024 uitdeITP Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Current user's phone status."""

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from uitdeitp_server.api.schemas import PhoneStatusResponse
from uitdeitp_server.auth import get_current_user_id
from uitdeitp_server.database import get_db
from uitdeitp_server.errors import RateLimitExceeded
from uitdeitp_server.rate_limit import RateLimiters, client_identifier, get_rate_limiters, rate_limit_headers
from uitdeitp_server.services.profiles import get_profile

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me/phone", response_model=PhoneStatusResponse)
async def get_my_phone(
    request: Request,
    response: Response,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    limiters: RateLimiters = Depends(get_rate_limiters),
) -> PhoneStatusResponse:
    """Phone on file and whether it has been verified."""
    decision = await limiters.api.check(client_identifier(request, user_id=user_id))
    if not decision.allowed:
        raise RateLimitExceeded(decision)
    response.headers.update(rate_limit_headers(decision))
    user = await get_profile(db, user_id)
    if not user:
        return PhoneStatusResponse()
    return PhoneStatusResponse(phone=user.phone, phone_verified=user.phone_verified)
