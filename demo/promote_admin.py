#!/usr/bin/env python3
"""One-time script to promote a staff user to ADMIN. Run on the server.

Usage:
    DATABASE_URL=sqlite+aiosqlite:///./data/bikeshare.db python demo/promote_admin.py staff@example.com
"""
import asyncio
import sys
from sqlalchemy import update
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from bikeshare.config import settings
from bikeshare.models.user import User, UserType

async def promote(email: str):
    engine = create_async_engine(settings.DATABASE_URL)
    sf = async_sessionmaker(engine, class_=AsyncSession)
    async with sf() as s:
        r = await s.execute(
            update(User)
            .where(User.email == email)
            .values(user_type=UserType.ADMIN)
        )
        await s.commit()
        print(f"Rows updated: {r.rowcount}")
    await engine.dispose()

asyncio.run(promote(sys.argv[1] if len(sys.argv) > 1 else "admin@bikedemo.cm"))
