# Copyright (C) 2024 uitdeITP Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Phone verification code model."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from uitdeitp_server.models.base import Base
from uitdeitp_server.models.timestamp import TimestampMixin


class VerificationPurpose(str, enum.Enum):
    """Flow a code belongs to. Codes for different purposes never collide."""

    REGISTRATION = "registration"
    LOGIN = "login"
    PHONE_CHANGE = "phone_change"
    EMAIL_CHANGE = "email_change"
    KIOSK = "kiosk"


# At most one unconsumed, unrevoked code per (phone, purpose).
_ONE_OPEN_CODE_WHERE = text("consumed = false AND revoked_at IS NULL")


class PhoneVerification(Base, TimestampMixin):
    """SMS code sent to a phone number.

    Expiry is never stored as a status: a record is usable while it is
    unconsumed, unrevoked, unexpired and below the attempt cap. See
    services.verification_store.is_active for the single definition.
    """

    __tablename__ = "phone_verifications"
    __table_args__ = (
        Index(
            "uq_phone_verifications_open_code",
            "phone_number",
            "purpose",
            unique=True,
            postgresql_where=_ONE_OPEN_CODE_WHERE,
            sqlite_where=_ONE_OPEN_CODE_WHERE,
        ),
        Index("ix_phone_verifications_phone_created", "phone_number", "created_at"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    phone_number: Mapped[str] = mapped_column(String(16), nullable=False)
    code: Mapped[str] = mapped_column(String(12), nullable=False)
    purpose: Mapped[str] = mapped_column(String(32), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    consumed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    consumed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    owner_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    station_id: Mapped[int | None] = mapped_column(ForeignKey("kiosk_stations.id"), nullable=True)
