# Copyright (C) 2024 uitdeITP Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Pydantic schemas for API request/response. JSON uses camelCase."""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from uitdeitp_server.models import VerificationPurpose


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Account flow
class SendCodeRequest(CamelModel):
    phone: str = Field(min_length=9, max_length=20)
    purpose: VerificationPurpose = VerificationPurpose.REGISTRATION

    @field_validator("purpose")
    @classmethod
    def not_kiosk(cls, v: VerificationPurpose) -> VerificationPurpose:
        if v is VerificationPurpose.KIOSK:
            raise ValueError("Kiosk codes are sent through /verification/send")
        return v


class ValidateCodeRequest(SendCodeRequest):
    code: str = Field(min_length=1, max_length=12)


class SendCodeResponse(CamelModel):
    success: bool = True
    verification_id: str
    expires_in: int


class SuccessResponse(CamelModel):
    success: bool = True


# Kiosk flow
class KioskSendRequest(CamelModel):
    phone: str = Field(min_length=9, max_length=20)
    station_slug: str = Field(min_length=1, max_length=64)


class KioskVerifyRequest(CamelModel):
    phone: str = Field(min_length=9, max_length=20)
    code: str = Field(min_length=1, max_length=12)


class KioskVerifyResponse(CamelModel):
    success: bool = True
    verified: bool = True


# Profile
class PhoneStatusResponse(CamelModel):
    phone: str | None = None
    phone_verified: bool = False
