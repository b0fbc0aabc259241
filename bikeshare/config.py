"""
Application configuration using Pydantic Settings.

All configuration is loaded from environment variables, with an optional .env file
as a fallback. Secrets stay out of source code: the .env file is gitignored, and
.env.example provides a safe template for developers.

Pydantic Settings resolves each value in this order:
  1. Environment variables (highest priority)
  2. The .env file
  3. Defaults defined here (lowest priority)

Usage:
    from bikeshare.config import settings
    print(settings.PRICING_TIMEZONE)
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Central configuration for the bike-share ledger service.

    Required fields (no defaults) MUST be set in .env or environment:
      - SECRET_KEY: Used to sign JWT tokens
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # --- Application ---
    APP_NAME: str = "Bike Share Ledger"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False

    # --- Logging ---
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # --- Database ---
    # SQLite for development; swap to a postgresql+asyncpg URL for production
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/bikeshare.db"

    # Upper bound on how long a money movement waits for a wallet row lock.
    # Applied with SET LOCAL lock_timeout on PostgreSQL; SQLite uses it as
    # the busy timeout of the connection.
    WALLET_LOCK_TIMEOUT_MS: int = 3000

    # --- Authentication ---
    # REQUIRED: No default, forces the operator to set a real secret
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # --- Money ---
    # All amounts are integers in the minor unit of this currency.
    # XAF has no subunit, so 1 unit == 1 franc.
    CURRENCY: str = "XAF"

    # --- Pricing ---
    # Zone in which pricing rules (day of week, hour windows) are evaluated
    PRICING_TIMEZONE: str = "Africa/Douala"

    # Hourly rate shown by the public quote endpoint when no pricing
    # configuration is active. Never used to settle a ride.
    DISPLAY_HOURLY_RATE: int = 200

    # --- Wallet policy ---
    CASH_DEPOSIT_MINIMUM: int = 500

    # Security deposit a rider must hold before starting a ride (0 disables)
    REQUIRED_DEPOSIT: int = 0

    # Riders with a ride whose payment failed cannot start another one
    BLOCK_RIDES_WITH_UNPAID_BALANCE: bool = True

    # --- Payment gateway ---
    # Shared token the gateway sends in X-Callback-Token. Callbacks are
    # refused while it is unset.
    PAYMENT_CALLBACK_TOKEN: str | None = None

    # --- CORS ---
    # Origins allowed to make cross-origin requests (frontend URLs)
    ALLOWED_ORIGINS: list[str] = ["http://localhost:3000"]


# Singleton: import this instance everywhere instead of creating new Settings()
settings = Settings()
