from __future__ import annotations
import os
from pydantic import BaseModel

def _optional_int(name: str) -> int | None:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else None

class Settings(BaseModel):
    environment: str = os.getenv("ENVIRONMENT", "dev")
    app_name: str = os.getenv("APP_NAME", "bagami-ledger-api")
    app_display_name: str = os.getenv("APP_DISPLAY_NAME", "Bagami")
    app_version: str = os.getenv("APP_VERSION", "0.1.0")
    git_sha: str = os.getenv("GIT_SHA", "dev")
    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    cors_origins: list[str] = os.getenv("CORS_ORIGINS", "*").split(",")
    database_url: str = os.getenv("DATABASE_URL", "postgresql+asyncpg://postgres:postgres@db:5432/bagami_dev")
    redis_url: str = os.getenv("REDIS_URL", "redis://redis:6379/0")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Wallet / ledger
    base_currency: str = os.getenv("BASE_CURRENCY", "XOF")
    max_topup_amount: int = int(os.getenv("MAX_TOPUP_AMOUNT", "10000000"))
    min_add_money_amount: int = int(os.getenv("MIN_ADD_MONEY_AMOUNT", "100"))

    # Platform commission (fallback when the commission_rate setting is missing or unreadable)
    default_commission_rate: str = os.getenv("DEFAULT_COMMISSION_RATE", "0.175")
    min_fee: int = int(os.getenv("MIN_FEE", "0"))
    max_fee: int | None = _optional_int("MAX_FEE")  # None = unbounded

    # Notifications
    notification_backend: str = os.getenv("NOTIFICATION_BACKEND", "rq")  # rq|log
    notification_queue: str = os.getenv("NOTIFICATION_QUEUE", "notifications")

settings = Settings()
