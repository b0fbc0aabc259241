"""
FastAPI application factory and entry point.

This module creates and configures the FastAPI application:
  1. Lifespan manager — logging setup, DB table creation, cleanup
  2. Middleware — correlation IDs, request logging, CORS
  3. Exception handlers — maps domain errors to HTTP responses
  4. Router registration — mounts all API endpoint groups

Running locally:
    uvicorn bikeshare.main:app --reload
"""

from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.engine import make_url

from bikeshare.config import settings
from bikeshare.database import engine, Base
from bikeshare.exceptions import register_exception_handlers
from bikeshare.logging_config import get_logger, setup_logging
from bikeshare.middleware import CorrelationIdMiddleware, RequestLoggingMiddleware
from bikeshare.routers import (
    admin,
    auth,
    bikes,
    incidents,
    payments,
    pricing_admin,
    public,
    rides,
    wallet,
)

logger = get_logger(__name__)


def _ensure_sqlite_directory(database_url: str) -> None:
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup:
      Configures structured logging and creates all database tables if they
      don't exist. In production, schema changes belong in migrations.

    Shutdown:
      Disposes of the database engine, closing all connections cleanly.
    """
    # --- Startup ---
    setup_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON)
    _ensure_sqlite_directory(settings.DATABASE_URL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(
        "Application started",
        extra_data={"version": settings.APP_VERSION, "currency": settings.CURRENCY},
    )
    yield
    # --- Shutdown ---
    await engine.dispose()
    logger.info("Application stopped")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Bike-share pricing and wallet ledger API",
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------

# Added last runs first: the correlation id is set before the request is logged
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------

register_exception_handlers(app)

# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

app.include_router(auth.router, prefix="/auth", tags=["Authentication"])
app.include_router(wallet.router, prefix="/wallet", tags=["Wallet"])
app.include_router(rides.router, prefix="/rides", tags=["Rides"])
app.include_router(bikes.router, prefix="/bikes", tags=["Bikes"])
app.include_router(incidents.router, prefix="/incidents", tags=["Incidents"])
app.include_router(payments.router, prefix="/payments", tags=["Payments"])
app.include_router(public.router, prefix="/public", tags=["Public"])
app.include_router(pricing_admin.router, prefix="/admin/pricing", tags=["Admin: Pricing"])
app.include_router(admin.router, prefix="/admin", tags=["Admin"])


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

@app.get("/health", tags=["Health"])
async def health_check():
    """Liveness probe for load balancers and orchestrators."""
    return {"status": "ok", "version": settings.APP_VERSION}
