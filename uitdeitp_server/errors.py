# Copyright (C) 2024 uitdeITP Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Verification error taxonomy and the JSON error envelope."""

import logging
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

if TYPE_CHECKING:
    from uitdeitp_server.rate_limit import RateLimitDecision

logger = logging.getLogger(__name__)

HTTP_ERROR_CODES = {
    status.HTTP_401_UNAUTHORIZED: "UNAUTHORIZED",
    status.HTTP_403_FORBIDDEN: "FORBIDDEN",
    status.HTTP_404_NOT_FOUND: "NOT_FOUND",
    status.HTTP_405_METHOD_NOT_ALLOWED: "METHOD_NOT_ALLOWED",
}


class VerificationError(Exception):
    """Base class for failures reported to API callers as {success: false, error, code}."""

    code = "VERIFICATION_ERROR"
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Verification failed."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.message
        super().__init__(self.message)

    def payload(self) -> dict[str, Any]:
        return {"success": False, "error": self.message, "code": self.code}

    def headers(self) -> dict[str, str] | None:
        return None


class ValidationError(VerificationError):
    """Malformed phone number or code. The user must correct the input."""

    code = "VALIDATION_ERROR"
    message = "Invalid input."


class RateLimitExceeded(VerificationError):
    """Too many requests for this identifier. Retry after decision.reset_at."""

    code = "RATE_LIMIT_EXCEEDED"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    message = "Too many requests. Please try again later."

    def __init__(self, decision: "RateLimitDecision", message: str | None = None) -> None:
        super().__init__(message)
        self.decision = decision

    def payload(self) -> dict[str, Any]:
        return {**super().payload(), "resetAt": int(self.decision.reset_at)}

    def headers(self) -> dict[str, str]:
        from uitdeitp_server.rate_limit import rate_limit_headers

        return rate_limit_headers(self.decision)


class CodeNotFound(VerificationError):
    """No active code: never sent, expired, consumed or superseded."""

    code = "NO_ACTIVE_CODE"
    message = "Invalid or expired code. Please request a new code."


class IncorrectCode(VerificationError):
    code = "INCORRECT_CODE"

    def __init__(self, attempts_left: int) -> None:
        self.attempts_left = attempts_left
        super().__init__(f"Incorrect code. {attempts_left} attempts left.")

    def payload(self) -> dict[str, Any]:
        return {**super().payload(), "attemptsLeft": self.attempts_left}


class AttemptsExhausted(VerificationError):
    code = "TOO_MANY_ATTEMPTS"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    message = "Too many attempts. Please request a new code."


class StorageError(VerificationError):
    """Transient database failure. Safe to retry; internal details are not exposed."""

    code = "STORAGE_ERROR"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    message = "Service temporarily unavailable. Please try again."


class DeliveryError(VerificationError):
    """The code was issued but the SMS could not be delivered.

    The record stays active; verification_id lets the client offer a resend.
    """

    code = "DELIVERY_FAILED"
    message = "Could not send the SMS. Check the phone number or request a new code."

    def __init__(self, message: str | None = None, verification_id: str | None = None) -> None:
        super().__init__(message)
        self.verification_id = verification_id

    def payload(self) -> dict[str, Any]:
        out = super().payload()
        if self.verification_id:
            out["verificationId"] = self.verification_id
        return out


class StationNotFound(VerificationError):
    code = "STATION_NOT_FOUND"
    message = "Station not found."


async def verification_error_handler(request: Request, exc: VerificationError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.code)
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.payload(),
        headers=exc.headers(),
    )


async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report body validation failures in the same envelope, with the first message."""
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid input.") if errors else "Invalid input."
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "error": message, "code": ValidationError.code},
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Framework errors (401, 404, 405) in the same envelope; keeps WWW-Authenticate."""
    code = HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR")
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": str(exc.detail), "code": code},
        headers=getattr(exc, "headers", None),
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(VerificationError, verification_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
