"""
Storefront Settings

Configuration management using pydantic settings.
Loads from environment variables with STOREFRONT_ prefix.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import computed_field
from typing import List


class Settings(BaseSettings):
    """
    API configuration settings.

    Environment variables:
    - STOREFRONT_DATABASE_URL: SQLAlchemy URL (default: local SQLite file)
    - STOREFRONT_ALLOWED_ORIGINS_RAW: Comma-separated list of allowed CORS origins
    - STOREFRONT_STRIPE_SECRET_KEY: Secret key used for gateway API calls
    - STOREFRONT_STRIPE_WEBHOOK_SECRET: Shared secret for webhook signatures
    - STOREFRONT_LOW_STOCK_THRESHOLD: Stock level counted as low (default: 10)
    - STOREFRONT_BCRYPT_ROUNDS: bcrypt cost factor for new passwords (default: 12)
    - STOREFRONT_HOST / STOREFRONT_PORT: Bind address for `storefront-api` (default: 127.0.0.1:8085)
    - STOREFRONT_LOG_LEVEL: Root log level (default: INFO)
    """

    model_config = SettingsConfigDict(
        env_prefix="STOREFRONT_",
        env_file=".env",
        extra="ignore",
    )

    database_url: str = "sqlite:///./storefront.db"
    allowed_origins_raw: str = "*"

    # Payment gateway
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    currency: str = "usd"
    webhook_tolerance_seconds: int = 300

    # Reporting
    low_stock_threshold: int = 10
    top_products_limit: int = 5
    recent_orders_limit: int = 10

    # bcrypt cost factor (log2 rounds)
    bcrypt_rounds: int = 12

    host: str = "127.0.0.1"
    port: int = 8085

    log_level: str = "INFO"
    debug: bool = False

    @computed_field
    @property
    def allowed_origins(self) -> List[str]:
        """Parse comma-separated allowed origins into list."""
        if not self.allowed_origins_raw:
            return []
        return [v.strip() for v in self.allowed_origins_raw.split(",") if v.strip()]
