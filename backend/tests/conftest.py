"""
Shared test setup. The environment is pinned before ``app`` is imported so the
module-level settings and engine never point at a real database or real tokens.
"""

import os

os.environ["ENVIRONMENT"] = "development"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./.pytest_dashboard.db"
os.environ["API_KEY"] = ""
os.environ["ENCRYPTION_KEY"] = ""
os.environ["CRON_SECRET"] = ""
os.environ["SEED_CREDENTIALS_ON_STARTUP"] = "false"
for _name in list(os.environ):
    if _name.startswith("TIKTOK_"):
        del os.environ[_name]

import pytest  # noqa: E402


@pytest.fixture
def anyio_backend():
    return "asyncio"
