# Copyright (C) 2024 uitdeITP Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Kiosk station model - inspection stations running the self-registration tablet."""

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from uitdeitp_server.models.base import Base
from uitdeitp_server.models.timestamp import TimestampMixin


class KioskStation(Base, TimestampMixin):
    """Station addressed by slug from the kiosk URL."""

    __tablename__ = "kiosk_stations"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    # Name printed in the SMS ("Codul tau <sender>: 123456"); falls back to settings.sms_default_sender
    sms_sender_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
