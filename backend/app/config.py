"""
backend/app/config.py

Purpose:
    Central settings loading for backend services.

Dependencies:
    - pydantic-settings
    - pathlib
"""

from pathlib import Path

from pydantic_settings import BaseSettings

# Prefer backend/.env, fallback to project-root .env.
_BACKEND_ENV_FILE = Path(__file__).resolve().parent.parent / ".env"
_ROOT_ENV_FILE = Path(__file__).resolve().parent.parent.parent / ".env"


class Settings(BaseSettings):
    MONGO_URI: str
    MONGO_DB: str = "fortunabet"
    JWT_SECRET: str
    JWT_SECRET_OLD: str = ""  # Set during rotation; cleared after token expiry
    BACKEND_CORS_ORIGINS: str = "http://localhost:5173"
    FRONTEND_URL: str = "http://localhost:5173"  # base of links sent by e-mail
    COOKIE_SECURE: bool = False  # Set True in production (HTTPS)

    # JWT settings
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 1440

    # Odds provider (TheOddsAPI)
    ODDS_API_KEY: str = ""
    THEODDSAPI_BASE_URL: str = "https://api.the-odds-api.com/v4"
    ODDS_CACHE_TTL_SECONDS: int = 600  # events per sport
    SPORTS_CACHE_TTL_SECONDS: int = 3600  # sports list
    ODDS_HTTP_TIMEOUT_SECONDS: float = 15.0
    ODDS_HTTP_MAX_RETRIES: int = 2

    # Seed admin user (leave empty to skip seeding)
    SEED_ADMIN_USERNAME: str = "admin"
    SEED_ADMIN_EMAIL: str = ""
    SEED_ADMIN_PASSWORD: str = ""

    # Wallet limits
    DEPOSIT_MAX: float = 100_000.0
    WITHDRAWAL_MIN: float = 10.0
    WITHDRAWAL_MAX: float = 50_000.0
    STAKE_MAX: float = 100_000.0
    ODDS_MAX: float = 1_000.0  # per selection
    PAYOUT_MAX: float = 1_000_000.0  # potential payout of one wager
    MAX_SELECTIONS: int = 20

    # Account security
    OTP_TTL_MINUTES: int = 10
    PASSWORD_RESET_TTL_MINUTES: int = 15
    USERNAME_CHANGE_COOLDOWN_DAYS: int = 14

    # Settlement worker
    WAGER_RESOLVER_ENABLED: bool = True
    WAGER_RESOLVER_INTERVAL_MINUTES: int = 30

    model_config = {
        "env_file": (str(_BACKEND_ENV_FILE), str(_ROOT_ENV_FILE)),
        "extra": "ignore",
    }


settings = Settings()
