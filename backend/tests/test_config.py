"""
Tests for application configuration and settings validation.
"""

import os
import pytest
from unittest.mock import patch


def test_settings_loads_defaults():
    """Settings should load with sensible defaults in development."""
    # Clear the lru_cache so we get a fresh Settings instance
    from app.config import get_settings
    get_settings.cache_clear()

    with patch.dict(os.environ, {
        "ENVIRONMENT": "development",
        "DATABASE_URL": "postgresql+asyncpg://localhost/test",
    }, clear=False):
        get_settings.cache_clear()
        settings = get_settings()
        assert settings.environment == "development"
        assert settings.is_production is False
        assert settings.order_page_size == 50
        assert settings.campaign_page_size == 100
        assert settings.shop_utc_offset_hours == 8
        assert settings.business_api_root == "https://business-api.tiktok.com/open_api/v1.3"
        get_settings.cache_clear()


def test_settings_cors_origin_list():
    """CORS origins string should be split into a list."""
    from app.config import get_settings
    get_settings.cache_clear()

    with patch.dict(os.environ, {
        "ENVIRONMENT": "development",
        "DATABASE_URL": "postgresql+asyncpg://localhost/test",
        "CORS_ORIGINS": "http://localhost:3000, http://example.com",
    }, clear=False):
        get_settings.cache_clear()
        settings = get_settings()
        origins = settings.cors_origin_list
        assert len(origins) == 2
        assert "http://localhost:3000" in origins
        assert "http://example.com" in origins
        get_settings.cache_clear()


def test_plain_postgres_url_is_rewritten_for_asyncpg():
    from app.config import Settings
    settings = Settings(database_url="postgresql://user:pw@db-host:5432/dashboard")
    assert settings.database_url == "postgresql+asyncpg://user:pw@db-host:5432/dashboard"


def test_production_requires_api_key():
    """Production mode should refuse to start without an API key."""
    from app.config import Settings
    with pytest.raises(ValueError, match="API_KEY must be set"):
        Settings(
            environment="production",
            api_key="",
            encryption_key="x",
            database_url="postgresql+asyncpg://prod-host/db",
        )


def test_production_requires_encryption_key():
    from app.config import Settings
    with pytest.raises(ValueError, match="ENCRYPTION_KEY must be set"):
        Settings(
            environment="production",
            api_key="real-api-key",
            encryption_key="",
            database_url="postgresql+asyncpg://prod-host/db",
        )


def test_production_accepts_real_secrets():
    from app.config import Settings
    settings = Settings(
        environment="production",
        api_key="real-api-key",
        encryption_key="real-encryption-key",
        database_url="postgresql+asyncpg://prod-host/db",
    )
    assert settings.is_production is True
    assert settings.api_key == "real-api-key"
