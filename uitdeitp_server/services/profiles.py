# Copyright (C) 2024 uitdeITP Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""User profile rows. Accounts live with the auth provider; profiles are created on first use."""

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from uitdeitp_server.errors import StorageError
from uitdeitp_server.models import User


async def get_profile(db: AsyncSession, user_id: int) -> User | None:
    try:
        result = await db.execute(select(User).where(User.id == user_id))
    except SQLAlchemyError as e:
        raise StorageError() from e
    return result.scalar_one_or_none()


async def ensure_profile(db: AsyncSession, user_id: int) -> User:
    """Return the profile for user_id, creating an empty one if missing. Not committed."""
    user = await get_profile(db, user_id)
    if user is None:
        user = User(id=user_id, phone_verified=False)
        db.add(user)
        try:
            await db.flush()
        except SQLAlchemyError as e:
            raise StorageError() from e
    return user


async def mark_phone_verified(db: AsyncSession, user_id: int, phone: str) -> User:
    """Store the verified canonical phone on the profile. Not committed."""
    user = await ensure_profile(db, user_id)
    user.phone = phone
    user.phone_verified = True
    return user


async def is_phone_verified(db: AsyncSession, user_id: int) -> bool:
    user = await get_profile(db, user_id)
    return bool(user and user.phone_verified)
