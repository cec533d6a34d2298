from functools import lru_cache
from typing import Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global application settings."""

    # Application
    ENVIRONMENT: Literal["local", "development", "production"] = "local"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./storefront.db"
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800

    # Background worker
    REDIS_URL: str = "redis://localhost:6379/0"
    WORKER_QUEUE_NAME: str = "arq:storefront"
    WORKER_JOB_TIMEOUT_SECONDS: int = 300
    WORKER_MAX_JOBS: int = 4

    # Telegram transport (delivery notifications)
    TELEGRAM_BOT_TOKEN: str = ""
    TELEGRAM_API_URL: str = "https://api.telegram.org"
    ADMIN_CHAT_IDS: list[str] = []

    # NOWPayments gateway
    NOWPAYMENTS_API_KEY: str = ""
    NOWPAYMENTS_API_URL: str = "https://api.nowpayments.io/v1"
    NOWPAYMENTS_IPN_SECRET: str = ""
    NOWPAYMENTS_IPN_CALLBACK_URL: str = "http://localhost:8000/webhooks/nowpayments"
    NOWPAYMENTS_SUCCESS_URL: str = "http://localhost:8000/payment/success"
    NOWPAYMENTS_CANCEL_URL: str = "http://localhost:8000/payment/cancel"
    PRICE_CURRENCY: str = "USD"
    DEFAULT_PAY_CURRENCY: str = "usdt"
    PAYMENT_RECONCILE_AFTER_MINUTES: int = 5
    PAYMENT_EXPIRE_AFTER_HOURS: int = 24  # invoices never opened by the customer

    # GCoin economy
    GCOIN_UNIT_PRICE: str = "0.01"  # price of one GCoin in PRICE_CURRENCY
    REFERRAL_SIGNUP_BONUS: int = 50
    REFERRAL_FIRST_PURCHASE_BONUS: int = 100

    # Fulfillment
    REFUND_MAX_ATTEMPTS: int = 5
    REFUND_RETRY_BASE_DELAY: float = 0.5
    STOCK_WRITE_ATTEMPTS: int = 5

    # API keys for the bot transport and the admin panel
    INTERNAL_API_KEY: str = "dev-internal-key"
    ADMIN_API_KEY: str = "dev-admin-key"

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("DATABASE_URL")
    @classmethod
    def assemble_db_connection(cls, v: Optional[str]) -> str:
        if isinstance(v, str):
            if v.startswith("postgresql://"):
                return v.replace("postgresql://", "postgresql+psycopg://", 1)
        return v

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")


@lru_cache
def get_settings() -> Settings:
    """
    Return the global settings instance, cached.
    """
    return Settings()
