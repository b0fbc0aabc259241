"""
Database engine, session management, and base model class.

This module sets up SQLAlchemy 2.0 with async support. Key components:

  - engine: The async database engine (connection pool for production DBs)
  - AsyncSessionLocal: Factory for creating async database sessions
  - Base: Declarative base class that all ORM models inherit from
  - get_db(): FastAPI dependency that provides a session per request

Architecture note:
  We use async SQLAlchemy (with aiosqlite for SQLite) so the API can serve
  concurrent requests without blocking. Moving to PostgreSQL only needs a
  different DATABASE_URL (asyncpg driver).

Session lifecycle:
  Each API request gets its own session via get_db(), and that session is
  the unit of atomicity for every ledger write made by the request: the
  wallet update, its transaction record and its audit entry commit or roll
  back together.
"""

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from bikeshare.config import settings
from bikeshare.exceptions import BikeShareError, ConcurrencyConflictError


def engine_options(database_url: str) -> dict:
    """
    Driver options for a database URL.

    SQLite serializes writers with a file lock; the busy timeout is how long
    a second writer waits for it before giving up with "database is locked".
    """
    if database_url.startswith("sqlite"):
        return {"connect_args": {"timeout": settings.WALLET_LOCK_TIMEOUT_MS / 1000}}
    return {}


# echo=True in debug mode logs all SQL statements
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    **engine_options(settings.DATABASE_URL),
)

# expire_on_commit=False prevents lazy-load errors after commit: without it,
# reading an attribute of a committed object would trigger a synchronous
# DB call, which fails in async context.
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""
    pass


async def get_db():
    """
    FastAPI dependency that provides a database session.

    Usage in a route:
        @router.get("/rides")
        async def list_rides(db: AsyncSession = Depends(get_db)):
            ...

    Commit policy:
      - success: commit
      - domain error: commit, so failed-payment records and audit entries
        written before the error survive
      - concurrency conflict: roll back, the caller retries the whole request
      - anything else: roll back
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except ConcurrencyConflictError:
            await session.rollback()
            raise
        except BikeShareError:
            await session.commit()
            raise
        except Exception:
            await session.rollback()
            raise
