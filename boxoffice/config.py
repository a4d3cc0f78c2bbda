# boxoffice/config.py

from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache
import os

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class Settings:
    hold_ttl_seconds: int = 600
    hold_max_ttl_seconds: int = 1800
    max_party_size: int = 10
    booking_fee_rate: Decimal = Decimal("0.025")
    code_max_attempts: int = 5
    hold_cleanup_interval_seconds: float = 60.0
    notification_webhook_url: str | None = None
    notification_timeout_seconds: float = 5.0
    db_connect_max_retries: int = 30
    db_connect_retry_delay: float = 1.5


def _load_settings() -> Settings:
    return Settings(
        hold_ttl_seconds=int(os.getenv("HOLD_TTL_SECONDS", "600")),
        hold_max_ttl_seconds=int(os.getenv("HOLD_MAX_TTL_SECONDS", "1800")),
        max_party_size=int(os.getenv("MAX_PARTY_SIZE", "10")),
        booking_fee_rate=Decimal(os.getenv("BOOKING_FEE_RATE", "0.025")),
        code_max_attempts=int(os.getenv("CODE_MAX_ATTEMPTS", "5")),
        hold_cleanup_interval_seconds=float(
            os.getenv("HOLD_CLEANUP_INTERVAL_SECONDS", "60")
        ),
        notification_webhook_url=os.getenv("NOTIFICATION_WEBHOOK_URL") or None,
        notification_timeout_seconds=float(
            os.getenv("NOTIFICATION_TIMEOUT_SECONDS", "5")
        ),
        db_connect_max_retries=int(os.getenv("DB_CONNECT_MAX_RETRIES", "30")),
        db_connect_retry_delay=float(os.getenv("DB_CONNECT_RETRY_DELAY", "1.5")),
    )


@lru_cache
def get_settings() -> Settings:
    return _load_settings()
