# Copyright (C) 2024 uitdeITP Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Database models."""

from uitdeitp_server.models.base import Base
from uitdeitp_server.models.user import User
from uitdeitp_server.models.kiosk_station import KioskStation
from uitdeitp_server.models.phone_verification import PhoneVerification, VerificationPurpose

__all__ = [
    "Base",
    "User",
    "KioskStation",
    "PhoneVerification",
    "VerificationPurpose",
]
