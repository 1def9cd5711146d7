import logging
from pydantic_settings import BaseSettings
from pydantic import model_validator, ConfigDict
from functools import lru_cache

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Environment: "development" or "production"
    environment: str = "development"

    database_url: str = "postgresql+asyncpg://localhost/tiktok_dashboard"

    @model_validator(mode="before")
    @classmethod
    def _fix_database_url_for_asyncpg(cls, values: dict) -> dict:
        """Managed Postgres hands out postgresql:// — the async engine needs postgresql+asyncpg://."""
        if not isinstance(values, dict):
            return values
        url = values.get("database_url") or ""
        if url.startswith("postgresql://") and "+asyncpg" not in url:
            values["database_url"] = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return values

    api_key: str = ""  # Required in production; in dev, empty = auth disabled
    cron_secret: str = ""
    encryption_key: str = ""
    cors_origins: str = "http://localhost:3000,http://localhost:5173"

    # TikTok Shop app (shared by every shop of the seller)
    tiktok_shop_app_key: str = ""
    tiktok_shop_app_secret: str = ""

    # Upstream endpoints
    tiktok_shop_api_base_url: str = "https://open-api.tiktokglobalshop.com"
    tiktok_auth_base_url: str = "https://auth.tiktok-shops.com"
    tiktok_business_api_base_url: str = "https://business-api.tiktok.com"
    tiktok_business_api_version: str = "v1.3"
    tiktok_order_api_version: str = "202309"

    # Paging and pacing
    order_page_size: int = 50
    campaign_page_size: int = 100
    report_page_size: int = 1000
    campaign_page_delay: float = 0.3
    integrated_report_page_delay: float = 0.5
    max_pages: int = 200
    http_timeout: float = 30.0
    request_deadline_seconds: float = 55.0

    # Shop calendar days are Malaysia time
    shop_utc_offset_hours: int = 8
    currency: str = "MYR"

    seed_credentials_on_startup: bool = False

    @model_validator(mode="after")
    def _validate_production_settings(self) -> "Settings":
        """Enforce that critical secrets are set when running in production."""
        if self.is_production:
            if not self.api_key:
                raise ValueError(
                    "API_KEY must be set in production. "
                    "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
                )
            if not self.encryption_key:
                raise ValueError(
                    "ENCRYPTION_KEY must be set in production. "
                    "Generate one with: python -c \"from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())\""
                )
            if not self.database_url or "localhost" in self.database_url:
                logger.warning("DATABASE_URL appears to point at localhost in production.")
        return self

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def business_api_root(self) -> str:
        base = self.tiktok_business_api_base_url.rstrip("/")
        return f"{base}/open_api/{self.tiktok_business_api_version}"


@lru_cache
def get_settings() -> Settings:
    return Settings()
