"""
Tests for the credential store against an on-disk SQLite database.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from cryptography.fernet import Fernet
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.config import Settings
from app.crypto import reset_cipher
from app.database import Base
from app.errors import CredentialStoreError
from app.models import ShopCredential
from app.services.credential_store import (
    ShopCredentials,
    credentials_from_environment,
    get_ads_account,
    get_credentials,
    list_credentials,
    resolve_credentials,
    seed_from_environment,
    upsert_credentials,
)
from app.services.token_service import refresh_and_persist


@pytest.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'credentials.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture(autouse=True)
def plaintext_tokens():
    reset_cipher()
    yield
    reset_cipher()


def _creds(n: int = 1, access: str = "at-1", refresh: str = "rt-1") -> ShopCredentials:
    return ShopCredentials(
        shop_number=n,
        shop_name=f"Shop {n}",
        shop_id=f"shop-id-{n}",
        access_token=access,
        refresh_token=refresh,
        shop_cipher=f"cipher-{n}",
        access_token_expires_at=1700000000,
    )


def _shop_env(monkeypatch, n: int, access: str = "env-at", refresh: str = "env-rt", cipher: str = "env-cipher"):
    monkeypatch.setenv(f"TIKTOK_SHOP{n}_ACCESS_TOKEN", access)
    monkeypatch.setenv(f"TIKTOK_SHOP{n}_REFRESH_TOKEN", refresh)
    monkeypatch.setenv(f"TIKTOK_SHOP{n}_SHOP_CIPHER", cipher)


@pytest.mark.anyio
async def test_upsert_then_get(session_factory):
    async with session_factory() as db:
        await upsert_credentials(db, _creds())
        await db.commit()

    async with session_factory() as db:
        creds = await get_credentials(db, 1)

    assert creds.access_token == "at-1"
    assert creds.refresh_token == "rt-1"
    assert creds.shop_cipher == "cipher-1"
    assert creds.access_token_expires_at == 1700000000
    assert creds.source == "database"


@pytest.mark.anyio
async def test_upsert_updates_existing_row(session_factory):
    async with session_factory() as db:
        await upsert_credentials(db, _creds(access="old"))
        await db.commit()
    async with session_factory() as db:
        await upsert_credentials(db, _creds(access="new", refresh="rt-2"))
        await db.commit()

    async with session_factory() as db:
        rows = (await db.execute(select(ShopCredential))).scalars().all()
        listed = await list_credentials(db)

    assert len(rows) == 1
    assert listed[0].access_token == "new"
    assert listed[0].refresh_token == "rt-2"


@pytest.mark.anyio
async def test_upsert_rejects_empty_tokens(session_factory):
    async with session_factory() as db:
        with pytest.raises(ValueError):
            await upsert_credentials(db, _creds(access=""))


@pytest.mark.anyio
async def test_tokens_are_encrypted_at_rest(session_factory):
    settings = Settings(encryption_key=Fernet.generate_key().decode())
    with patch("app.crypto.get_settings", return_value=settings):
        reset_cipher()
        async with session_factory() as db:
            await upsert_credentials(db, _creds(access="secret-at"))
            await db.commit()
        async with session_factory() as db:
            row = (await db.execute(select(ShopCredential))).scalar_one()
            creds = await get_credentials(db, 1)

    assert row.access_token != "secret-at"
    assert creds.access_token == "secret-at"


def test_shop_number_has_a_single_unique_index():
    table = ShopCredential.__table__
    assert table.c.shop_number.unique is True
    assert not [ix for ix in table.indexes if "shop_number" in ix.columns]


@pytest.mark.anyio
async def test_list_is_ordered_by_shop_number(session_factory):
    async with session_factory() as db:
        for n in (3, 1, 2):
            await upsert_credentials(db, _creds(n))
        await db.commit()
        listed = await list_credentials(db)
    assert [c.shop_number for c in listed] == [1, 2, 3]


@pytest.mark.anyio
async def test_resolve_prefers_database(session_factory, monkeypatch):
    _shop_env(monkeypatch, 1)
    async with session_factory() as db:
        await upsert_credentials(db, _creds())
        await db.commit()
        creds = await resolve_credentials(db, 1)
    assert creds.access_token == "at-1"
    assert creds.source == "database"


@pytest.mark.anyio
async def test_resolve_falls_back_to_environment(session_factory, monkeypatch):
    _shop_env(monkeypatch, 2, access='"quoted-at"')
    async with session_factory() as db:
        creds = await resolve_credentials(db, 2)
    assert creds.source == "environment"
    assert creds.access_token == "quoted-at"
    assert creds.shop_name == "HIM CLINIC"
    assert creds.shop_id == "7495102143139318172"


@pytest.mark.anyio
async def test_resolve_falls_back_when_store_fails(monkeypatch):
    _shop_env(monkeypatch, 1)
    with patch(
        "app.services.credential_store.get_credentials",
        new_callable=AsyncMock,
        side_effect=CredentialStoreError("database unavailable"),
    ):
        creds = await resolve_credentials(MagicMock(), 1)
    assert creds.source == "environment"
    assert creds.access_token == "env-at"


@pytest.mark.anyio
async def test_resolve_unknown_shop_without_row(session_factory):
    async with session_factory() as db:
        assert await resolve_credentials(db, 9) is None


def test_environment_requires_all_three_values(monkeypatch):
    monkeypatch.setenv("TIKTOK_SHOP3_ACCESS_TOKEN", "at")
    monkeypatch.setenv("TIKTOK_SHOP3_REFRESH_TOKEN", "rt")
    monkeypatch.delenv("TIKTOK_SHOP3_SHOP_CIPHER", raising=False)
    assert credentials_from_environment(3) is None


@pytest.mark.anyio
async def test_seed_from_environment_skips_incomplete_shops(session_factory, monkeypatch):
    _shop_env(monkeypatch, 1)
    _shop_env(monkeypatch, 3)
    async with session_factory() as db:
        seeded = await seed_from_environment(db)
        await db.commit()
        listed = await list_credentials(db)
    assert seeded == [1, 3]
    assert [(c.shop_number, c.shop_name) for c in listed] == [(1, "DrSamhanWellness"), (3, "Vigomax HQ")]


def test_ads_accounts():
    assert get_ads_account(1).advertiser_id == "7505228077656621057"
    assert get_ads_account(1).has_gmv_max is True
    assert get_ads_account(2).has_gmv_max is False
    assert get_ads_account(4) is None


@pytest.mark.anyio
async def test_refresh_and_persist_rotates_stored_tokens(session_factory):
    async with session_factory() as db:
        await upsert_credentials(db, _creds())
        await db.commit()

    auth = MagicMock()
    auth.refresh_token = AsyncMock(return_value={
        "code": 0,
        "data": {"access_token": "rotated-at", "refresh_token": "rotated-rt", "access_token_expire_in": 1800000000000},
    })
    outcome = await refresh_and_persist(_creds(), "key", "secret", session_factory, auth_client=auth)
    assert outcome.success is True

    async with session_factory() as db:
        creds = await get_credentials(db, 1)
        row = (await db.execute(select(ShopCredential))).scalar_one()
    assert creds.access_token == "rotated-at"
    assert creds.refresh_token == "rotated-rt"
    assert creds.access_token_expires_at == 1800000000
    assert row.last_refreshed_at is not None


@pytest.mark.anyio
async def test_failed_refresh_leaves_stored_tokens_alone(session_factory):
    async with session_factory() as db:
        await upsert_credentials(db, _creds())
        await db.commit()

    auth = MagicMock()
    auth.refresh_token = AsyncMock(return_value={"error": "invalid_grant"})
    outcome = await refresh_and_persist(_creds(), "key", "secret", session_factory, auth_client=auth)
    assert outcome.success is False

    async with session_factory() as db:
        creds = await get_credentials(db, 1)
    assert creds.access_token == "at-1"


@pytest.mark.anyio
async def test_populate_script_seeds_shops(session_factory, monkeypatch, capsys):
    from scripts.populate_tokens import main

    _shop_env(monkeypatch, 4)
    assert await main(session_factory) == 0
    async with session_factory() as db:
        assert [c.shop_number for c in await list_credentials(db)] == [4]
    assert "Shop 4 (VigomaxPlus HQ): saved" in capsys.readouterr().out


@pytest.mark.anyio
async def test_populate_script_fails_without_tokens(session_factory):
    from scripts.populate_tokens import main

    assert await main(session_factory) == 1
