"""
Credential Store — per-shop TikTok Shop tokens.

The ``shop_credentials`` table is the source of truth. The environment
(TIKTOK_SHOP{n}_*) is the bootstrap/disaster-recovery fallback, combined with
the static table of known shop ids below.

Marketing API (ads) tokens are long-lived, are not rotated here, and are read
straight from the environment.
"""

import logging
from typing import Optional
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from app.crypto import encrypt_value, decrypt_value
from app.errors import CredentialStoreError
from app.models import ShopCredential
from app.utils import clean_env, utcnow

logger = logging.getLogger(__name__)

KNOWN_SHOPS: dict[int, dict[str, str]] = {
    1: {"id": "7495609155379170274", "name": "DrSamhanWellness"},
    2: {"id": "7495102143139318172", "name": "HIM CLINIC"},
    3: {"id": "7494799386964364219", "name": "Vigomax HQ"},
    4: {"id": "7495580262600706099", "name": "VigomaxPlus HQ"},
}


class AdsAccount(BaseModel):
    shop_number: int
    name: str
    advertiser_id: str
    store_id: str
    access_token_env: str
    has_gmv_max: bool = True


ADS_ACCOUNTS: dict[int, AdsAccount] = {
    1: AdsAccount(
        shop_number=1,
        name="Account 1",
        advertiser_id="7505228077656621057",
        store_id="7495609155379170274",
        access_token_env="TIKTOK_ADS_ACCOUNT1_ACCESS_TOKEN",
        has_gmv_max=True,
    ),
    2: AdsAccount(
        shop_number=2,
        name="Account 2",
        advertiser_id="7404387549454008336",
        store_id="7495102143139318172",
        access_token_env="TIKTOK_ADS_ACCOUNT2_ACCESS_TOKEN",
        has_gmv_max=False,
    ),
}


class ShopCredentials(BaseModel):
    """Decrypted credentials for one shop."""
    shop_number: int
    shop_name: str
    shop_id: str
    access_token: str
    refresh_token: str
    shop_cipher: str
    access_token_expires_at: Optional[int] = None
    refresh_token_expires_at: Optional[int] = None
    open_id: Optional[str] = None
    seller_name: Optional[str] = None
    seller_base_region: Optional[str] = None
    source: str = "database"


def _from_row(row: ShopCredential) -> ShopCredentials:
    return ShopCredentials(
        shop_number=row.shop_number,
        shop_name=row.shop_name,
        shop_id=row.shop_id,
        access_token=decrypt_value(row.access_token),
        refresh_token=decrypt_value(row.refresh_token),
        shop_cipher=row.shop_cipher,
        access_token_expires_at=row.access_token_expires_at,
        refresh_token_expires_at=row.refresh_token_expires_at,
        open_id=row.open_id,
        seller_name=row.seller_name,
        seller_base_region=row.seller_base_region,
    )


# ── Reads ─────────────────────────────────────────────────────────────

async def get_credentials(db: AsyncSession, shop_number: int) -> Optional[ShopCredentials]:
    """Stored credentials for a shop, or None. Store failures raise CredentialStoreError."""
    try:
        result = await db.execute(select(ShopCredential).where(ShopCredential.shop_number == shop_number))
        row = result.scalar_one_or_none()
    except SQLAlchemyError as e:
        raise CredentialStoreError(f"Failed to read credentials for shop {shop_number}: {e}") from e
    return _from_row(row) if row else None


async def list_credentials(db: AsyncSession) -> list[ShopCredentials]:
    try:
        result = await db.execute(select(ShopCredential).order_by(ShopCredential.shop_number))
        rows = result.scalars().all()
    except SQLAlchemyError as e:
        raise CredentialStoreError(f"Failed to list credentials: {e}") from e
    return [_from_row(r) for r in rows]


def credentials_from_environment(shop_number: int) -> Optional[ShopCredentials]:
    """Known shop id/name + TIKTOK_SHOP{n}_ACCESS_TOKEN/_REFRESH_TOKEN/_SHOP_CIPHER."""
    shop = KNOWN_SHOPS.get(shop_number)
    if not shop:
        return None
    access_token = clean_env(f"TIKTOK_SHOP{shop_number}_ACCESS_TOKEN")
    refresh_token = clean_env(f"TIKTOK_SHOP{shop_number}_REFRESH_TOKEN")
    shop_cipher = clean_env(f"TIKTOK_SHOP{shop_number}_SHOP_CIPHER")
    if not access_token or not refresh_token or not shop_cipher:
        return None
    return ShopCredentials(
        shop_number=shop_number,
        shop_name=shop["name"],
        shop_id=shop["id"],
        access_token=access_token,
        refresh_token=refresh_token,
        shop_cipher=shop_cipher,
        source="environment",
    )


async def resolve_credentials(db: AsyncSession, shop_number: int) -> Optional[ShopCredentials]:
    """
    Credentials for serving a request: the stored row, else the environment.
    A store failure is logged and treated like a miss.
    """
    try:
        creds = await get_credentials(db, shop_number)
        if creds:
            return creds
    except CredentialStoreError as e:
        logger.error(f"{e} — falling back to environment")
    creds = credentials_from_environment(shop_number)
    if creds:
        logger.info(f"Using environment credentials for shop {shop_number}")
    return creds


# ── Writes ────────────────────────────────────────────────────────────

async def upsert_credentials(db: AsyncSession, creds: ShopCredentials) -> ShopCredential:
    """Insert or update the row for ``creds.shop_number``. Tokens are encrypted."""
    if not creds.access_token or not creds.refresh_token:
        raise ValueError(f"Shop {creds.shop_number}: access_token and refresh_token must not be empty")

    try:
        result = await db.execute(
            select(ShopCredential).where(ShopCredential.shop_number == creds.shop_number)
        )
        row = result.scalar_one_or_none()
        if row is None:
            row = ShopCredential(shop_number=creds.shop_number)
            db.add(row)

        row.shop_name = creds.shop_name
        row.shop_id = creds.shop_id
        row.access_token = encrypt_value(creds.access_token)
        row.refresh_token = encrypt_value(creds.refresh_token)
        row.shop_cipher = creds.shop_cipher
        row.access_token_expires_at = creds.access_token_expires_at
        row.refresh_token_expires_at = creds.refresh_token_expires_at
        for field in ("open_id", "seller_name", "seller_base_region"):
            value = getattr(creds, field)
            if value is not None:
                setattr(row, field, value)
        row.updated_at = utcnow()
        await db.flush()
    except SQLAlchemyError as e:
        raise CredentialStoreError(f"Failed to save credentials for shop {creds.shop_number}: {e}") from e
    return row


async def seed_from_environment(db: AsyncSession) -> list[int]:
    """Upsert every known shop that has a complete set of env tokens."""
    seeded = []
    for shop_number, shop in KNOWN_SHOPS.items():
        creds = credentials_from_environment(shop_number)
        if creds is None:
            logger.warning(f"Skipping shop {shop_number} ({shop['name']}) — missing credentials in environment")
            continue
        await upsert_credentials(db, creds)
        seeded.append(shop_number)
        logger.info(f"Shop {shop_number} ({shop['name']}) tokens saved")
    return seeded


# ── Ads accounts ──────────────────────────────────────────────────────

def get_ads_account(shop_number: int) -> Optional[AdsAccount]:
    return ADS_ACCOUNTS.get(shop_number)


def ads_access_token(account: AdsAccount) -> str:
    return clean_env(account.access_token_env)
