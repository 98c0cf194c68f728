# Copyright (C) 2024 uitdeITP Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""User profile model."""

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from uitdeitp_server.models.base import Base
from uitdeitp_server.models.timestamp import TimestampMixin


class User(Base, TimestampMixin):
    """Customer profile. Accounts are created by the auth provider; we track the verified phone."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    email: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True, index=True)
    phone: Mapped[str | None] = mapped_column(String(16), nullable=True, index=True)
    phone_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
