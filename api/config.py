import os
from functools import lru_cache

from pydantic import BaseModel


class Settings(BaseModel):
    database_url: str = os.getenv(
        "DATABASE_URL",
        "postgresql+asyncpg://tiffin:tiffin@db:5432/tiffin",
    )
    redis_url: str = os.getenv("REDIS_URL", "redis://redis:6379/0")
    auto_create_tables: bool = os.getenv("AUTO_CREATE_TABLES", "false").lower() == "true"

    # Payment gateway
    razorpay_key_id: str | None = os.getenv("RAZORPAY_KEY_ID")
    razorpay_key_secret: str = os.getenv("RAZORPAY_KEY_SECRET", "")
    razorpay_webhook_secret: str = os.getenv("RAZORPAY_WEBHOOK_SECRET", "")

    # Notifications (email / WhatsApp relay)
    notification_webhook_url: str | None = os.getenv("NOTIFICATION_WEBHOOK_URL")

    # Business rules
    timezone: str = os.getenv("TIMEZONE", "Asia/Kolkata")
    currency: str = os.getenv("CURRENCY", "INR")
    cancellation_window_hours: int = int(os.getenv("CANCELLATION_WINDOW_HOURS", "24"))
    expiry_warning_days: int = int(os.getenv("EXPIRY_WARNING_DAYS", "3"))
    workflow_lock_ttl_sec: int = int(os.getenv("WORKFLOW_LOCK_TTL_SEC", "30"))
    scheduler_enabled: bool = os.getenv("SCHEDULER_ENABLED", "true").lower() == "true"

    environment: str = os.getenv("ENVIRONMENT", "development")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
