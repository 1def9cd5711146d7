"""
Credentials Router — Manage stored TikTok Shop tokens.
Tokens are never returned; the list shows presence and expiry only.
Reseeding writes tokens from the request body or, when none are given,
from the TIKTOK_SHOP{n}_* environment variables.
"""

import logging
from datetime import datetime, timezone
from typing import Optional
from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from app.database import get_db
from app.models import ShopCredential
from app.services.credential_store import (
    KNOWN_SHOPS, ShopCredentials, credentials_from_environment, get_credentials,
    seed_from_environment, upsert_credentials,
)

logger = logging.getLogger(__name__)
router = APIRouter()


# ── Schemas ──────────────────────────────────────────────────────────
class ShopTokenUpdate(BaseModel):
    access_token: str
    refresh_token: str
    shop_cipher: Optional[str] = None
    access_token_expires_at: Optional[int] = None
    refresh_token_expires_at: Optional[int] = None


# ── Helpers ───────────────────────────────────────────────────────────
def _expiry(epoch_seconds: Optional[int]) -> Optional[str]:
    if not epoch_seconds:
        return None
    return datetime.fromtimestamp(epoch_seconds, tz=timezone.utc).isoformat()


def _row_to_response(row: ShopCredential) -> dict:
    return {
        "shopNumber": row.shop_number,
        "shopName": row.shop_name,
        "shopId": row.shop_id,
        "hasAccessToken": bool(row.access_token),
        "hasRefreshToken": bool(row.refresh_token),
        "accessTokenExpiresAt": _expiry(row.access_token_expires_at),
        "refreshTokenExpiresAt": _expiry(row.refresh_token_expires_at),
        "sellerName": row.seller_name,
        "sellerBaseRegion": row.seller_base_region,
        "lastRefreshedAt": row.last_refreshed_at.isoformat() if row.last_refreshed_at else None,
        "updatedAt": row.updated_at.isoformat() if row.updated_at else None,
    }


# ── Endpoints ────────────────────────────────────────────────────────
@router.get("")
async def list_shop_credentials(db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(ShopCredential).order_by(ShopCredential.shop_number))
    return [_row_to_response(r) for r in result.scalars().all()]


@router.put("/{shop_number}")
async def reseed_shop(
    shop_number: int,
    payload: Optional[ShopTokenUpdate] = Body(None),
    db: AsyncSession = Depends(get_db),
):
    """Manual reseed of one shop."""
    shop = KNOWN_SHOPS.get(shop_number)
    if not shop:
        raise HTTPException(status_code=404, detail=f"Unknown shop number: {shop_number}")

    if payload is None:
        creds = credentials_from_environment(shop_number)
        if creds is None:
            raise HTTPException(
                status_code=400,
                detail=f"No tokens in request body and TIKTOK_SHOP{shop_number}_* not set in environment",
            )
    else:
        existing = await get_credentials(db, shop_number)
        shop_cipher = payload.shop_cipher or (existing.shop_cipher if existing else None)
        if not shop_cipher:
            raise HTTPException(status_code=400, detail="shop_cipher is required for a new shop")
        creds = ShopCredentials(
            shop_number=shop_number,
            shop_name=shop["name"],
            shop_id=shop["id"],
            access_token=payload.access_token,
            refresh_token=payload.refresh_token,
            shop_cipher=shop_cipher,
            access_token_expires_at=payload.access_token_expires_at,
            refresh_token_expires_at=payload.refresh_token_expires_at,
        )

    try:
        row = await upsert_credentials(db, creds)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    logger.info(f"Reseeded shop {shop_number} ({shop['name']}) from {'request' if payload else 'environment'}")
    return _row_to_response(row)


@router.post("/seed")
async def seed_all_shops(db: AsyncSession = Depends(get_db)):
    """Upsert every known shop that has tokens in the environment."""
    seeded = await seed_from_environment(db)
    skipped = [n for n in KNOWN_SHOPS if n not in seeded]
    return {"seeded": seeded, "skipped": skipped}
