# Copyright (C) 2024 uitdeITP Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Phone verification API for signed-in users."""

from fastapi import APIRouter, Depends, Request, Response

from uitdeitp_server.api.schemas import SendCodeRequest, SendCodeResponse, SuccessResponse, ValidateCodeRequest
from uitdeitp_server.auth import get_current_user_id
from uitdeitp_server.errors import RateLimitExceeded
from uitdeitp_server.rate_limit import RateLimiters, client_identifier, get_rate_limiters, rate_limit_headers
from uitdeitp_server.services.verification import VerificationService, get_verification_service

router = APIRouter(prefix="/verify-phone", tags=["verify-phone"])


@router.post("/send-code", response_model=SendCodeResponse)
async def send_code(
    data: SendCodeRequest,
    response: Response,
    user_id: int = Depends(get_current_user_id),
    service: VerificationService = Depends(get_verification_service),
) -> SendCodeResponse:
    """Send an SMS code to the given phone number."""
    result = await service.send_code(data.phone, data.purpose, owner_id=user_id)
    response.headers.update(rate_limit_headers(result.rate_limit))
    return SendCodeResponse(verification_id=result.verification_id, expires_in=result.expires_in)


@router.post("/validate-code", response_model=SuccessResponse)
async def validate_code(
    data: ValidateCodeRequest,
    request: Request,
    response: Response,
    user_id: int = Depends(get_current_user_id),
    service: VerificationService = Depends(get_verification_service),
    limiters: RateLimiters = Depends(get_rate_limiters),
) -> SuccessResponse:
    """Check the code. On success the phone is stored as verified on the user's profile."""
    decision = await limiters.validate_code.check(client_identifier(request, user_id=user_id))
    if not decision.allowed:
        raise RateLimitExceeded(decision)
    await service.validate_code(data.phone, data.purpose, data.code, owner_id=user_id)
    response.headers.update(rate_limit_headers(decision))
    return SuccessResponse()
