#!/usr/bin/env python3
# Copyright (C) 2024 uitdeITP Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Register a kiosk station. Run: python -m uitdeitp_server.scripts.create_station"""

import asyncio
import re
import sys

from sqlalchemy import select

from uitdeitp_server.database import async_session_maker, init_db
from uitdeitp_server.models import KioskStation

SLUG_RE = re.compile(r"^[a-z0-9][a-z0-9-]{0,63}$")


async def main():
    await init_db()
    slug = input("Station slug (e.g. itp-cluj-nord): ").strip().lower()
    name = input("Station name: ").strip()
    sender = input("SMS sender name (blank = station name): ").strip()
    if not slug or not name:
        print("Slug and name required")
        sys.exit(1)
    if not SLUG_RE.match(slug):
        print("Slug may contain lowercase letters, digits and dashes")
        sys.exit(1)

    async with async_session_maker() as session:
        result = await session.execute(select(KioskStation).where(KioskStation.slug == slug))
        if result.scalar_one_or_none():
            print("Station already exists")
            sys.exit(1)
        session.add(KioskStation(slug=slug, name=name, sms_sender_name=sender or None))
        await session.commit()
        print(f"Station created. Kiosk URL path: /kiosk/{slug}")


if __name__ == "__main__":
    asyncio.run(main())
