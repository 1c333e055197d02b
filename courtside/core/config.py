import os
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from dotenv import load_dotenv
from pydantic import BaseModel


class Settings(BaseModel):
    database_url: str = "sqlite:///./courtside.db"
    redis_url: Optional[str] = None

    # Gateway
    razorpay_key_id: Optional[str] = None
    razorpay_key_secret: Optional[str] = None
    razorpay_webhook_secret: Optional[str] = None
    currency: str = "INR"
    default_payment_method: str = "CARD"

    # Auth (token decoding only)
    jwt_secret: Optional[str] = None
    jwt_algorithm: str = "HS256"

    # Booking rules
    app_timezone: str = "Asia/Kolkata"
    slot_duration_minutes: int = 60
    claim_granularity_minutes: int = 15
    max_booking_hours: float = 8
    payment_expiry_minutes: int = 15
    refund_policy: str = "full"  # full | tiered

    # Background work
    sweep_interval_seconds: int = 60
    availability_cache_ttl: int = 30

    log_dir: str = "logs"

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()

        env = {
            "database_url": os.getenv("DATABASE_URL"),
            "redis_url": os.getenv("REDIS_URL"),
            "razorpay_key_id": os.getenv("RAZORPAY_KEY_ID"),
            "razorpay_key_secret": os.getenv("RAZORPAY_KEY_SECRET"),
            "razorpay_webhook_secret": os.getenv("RAZORPAY_WEBHOOK_SECRET"),
            "currency": os.getenv("CURRENCY"),
            "default_payment_method": os.getenv("DEFAULT_PAYMENT_METHOD"),
            "jwt_secret": os.getenv("JWT_SECRET"),
            "jwt_algorithm": os.getenv("JWT_ALGORITHM"),
            "app_timezone": os.getenv("APP_TIMEZONE"),
            "slot_duration_minutes": os.getenv("SLOT_DURATION_MINUTES"),
            "claim_granularity_minutes": os.getenv("CLAIM_GRANULARITY_MINUTES"),
            "max_booking_hours": os.getenv("MAX_BOOKING_HOURS"),
            "payment_expiry_minutes": os.getenv("PAYMENT_EXPIRY_MINUTES"),
            "refund_policy": os.getenv("REFUND_POLICY"),
            "sweep_interval_seconds": os.getenv("SWEEP_INTERVAL_SECONDS"),
            "availability_cache_ttl": os.getenv("AVAILABILITY_CACHE_TTL"),
            "log_dir": os.getenv("LOG_DIR"),
        }
        # Unset variables fall back to the model defaults
        return cls(**{k: v for k, v in env.items() if v not in (None, "")})

    def local_now(self) -> datetime:
        """Wall-clock time at the venues, as a naive datetime."""
        return datetime.now(ZoneInfo(self.app_timezone)).replace(tzinfo=None)
