from decimal import Decimal
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Centralized application settings loaded from environment.

    Required env vars (.env):
      - SUPABASE_URL
      - SUPABASE_KEY (anon key)
      - DATABASE_URL (Postgres connection string)
      - SUPABASE_JWT_SECRET (JWT signing secret from Supabase project settings)

    Optional:
      - SUPABASE_SERVICE_ROLE_KEY (storage uploads for receipts / labels)
      - CARD_GATEWAY_* (card payment gateway credentials)
      - CARRIER_* (cargo carrier credentials)
    """

    PROJECT_NAME: str = "B2B Commerce API"
    API_V1_STR: str = "/api/v1"
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:3001",
    ]

    # Supabase / DB config
    SUPABASE_URL: str
    SUPABASE_KEY: str
    DATABASE_URL: str

    # JWT verification (backend-side)
    SUPABASE_JWT_SECRET: str
    SUPABASE_JWT_ALG: str = "HS256"

    # Service role key bypasses RLS (backend only)
    SUPABASE_SERVICE_ROLE_KEY: str | None = None
    STORAGE_BUCKET: str = "documents"

    # Orders
    ORDER_NUMBER_PREFIX: str = "ORD"
    CURRENCY: str = "TRY"
    SHIPPING_COST_STANDARD: Decimal = Decimal("25.00")
    SHIPPING_COST_EXPRESS: Decimal = Decimal("50.00")
    SHIPPING_COST_PICKUP: Decimal = Decimal("0.00")

    # Unpaid orders older than this are auto-cancelled
    PAYMENT_TIMEOUT_HOURS: int = 24

    # Card gateway
    CARD_GATEWAY_MERCHANT_ID: str = ""
    CARD_GATEWAY_MERCHANT_KEY: str = ""
    CARD_GATEWAY_MERCHANT_SALT: str = ""
    CARD_GATEWAY_TOKEN_URL: str = "https://www.paytr.com/odeme/api/get-token"
    CARD_GATEWAY_IFRAME_URL: str = "https://www.paytr.com/odeme/guvenli/"
    CARD_GATEWAY_OK_URL: str = "http://localhost:3000/payment/success"
    CARD_GATEWAY_FAIL_URL: str = "http://localhost:3000/payment/fail"
    CARD_GATEWAY_MAX_INSTALLMENT: int = 12
    CARD_GATEWAY_TEST_MODE: bool = False

    # Cargo carrier
    CARRIER_NAME: str = "aras"
    CARRIER_API_URL: str = "https://customerservices.araskargo.com.tr"
    CARRIER_USERNAME: str = ""
    CARRIER_PASSWORD: str = ""
    CARRIER_CUSTOMER_CODE: str = ""
    CARRIER_WEBHOOK_SECRET: str = ""

    # Outbound HTTP
    HTTP_TIMEOUT_SECONDS: float = 30.0

    # Background sweeps
    ENABLE_BACKGROUND_SWEEPS: bool = True
    ORDER_SWEEP_INTERVAL_MINUTES: int = 60
    SHIPMENT_SWEEP_INTERVAL_MINUTES: int = 60
    SHIPMENT_REFRESH_AFTER_HOURS: int = 4
    CARRIER_POLL_DELAY_SECONDS: float = 2.0

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    def shipping_cost_for(self, delivery_type: str) -> Decimal:
        """
        Flat shipping cost per delivery type; unknown types fall back
        to the standard rate.
        """
        costs = {
            "standard": self.SHIPPING_COST_STANDARD,
            "express": self.SHIPPING_COST_EXPRESS,
            "pickup": self.SHIPPING_COST_PICKUP,
        }
        return costs.get(delivery_type, self.SHIPPING_COST_STANDARD)


@lru_cache
def get_settings() -> Settings:
    """
    Cached settings loader.
    Ensures we don't re-parse .env on every import / request.
    """
    return Settings()
