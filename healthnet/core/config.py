# healthnet/core/config.py
from decimal import Decimal
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Centralized application settings loaded from environment.

    Required env vars (.env):
      - DATABASE_URL (Postgres connection string; SQLite accepted locally)
      - JWT_SECRET (HS256 secret shared with the identity provider)
      - PAYSTACK_SECRET_KEY (gateway API key, also signs webhooks)

    Everything else has a sensible default.
    """

    PROJECT_NAME: str = "HealthNet Pharmacy API"
    API_V1_STR: str = "/api/v1"

    DATABASE_URL: str

    # JWT verification (backend-side)
    JWT_SECRET: str
    JWT_ALG: str = "HS256"

    # Payment gateway
    PAYSTACK_SECRET_KEY: str
    PAYSTACK_PUBLIC_KEY: str | None = None
    PAYSTACK_BASE_URL: str = "https://api.paystack.co"
    PAYMENT_CURRENCY: str = "GHS"
    PAYMENT_CURRENCY_SYMBOL: str = "GH₵"
    PAYMENT_GATEWAY_TIMEOUT: float = 15.0
    PAYMENT_WEBHOOK_VERIFY_SIGNATURE: bool = True
    PAYMENT_CALLBACK_URL: str | None = None
    PAYMENT_REFERENCE_PREFIX: str = "HN-PAY"

    FRONTEND_URL: str = "http://localhost:3000"

    # One tax policy for carts and orders
    TAX_RATE: Decimal = Decimal("0.075")

    ORDER_NUMBER_PREFIX: str = "HN"

    # Delivery pricing
    DELIVERY_DEFAULT_FEE: Decimal = Decimal("300.00")
    DELIVERY_FREE_THRESHOLD: Decimal = Decimal("100.00")
    DELIVERY_DISCOUNT_THRESHOLD: Decimal = Decimal("50.00")
    DELIVERY_TIME_ESTIMATE: str = "1-2 business days"

    LOW_STOCK_THRESHOLD: int = 10

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    """
    Cached settings loader.
    Ensures we don't re-parse .env on every import / request.
    """
    return Settings()
