"""
Token Service — TikTok Shop OAuth token refresh.

Refreshes one shop or every stored shop concurrently, persists the rotated
tokens, and reports a per-shop outcome. Nothing raised while refreshing one
shop ever escapes into the others.
"""

import asyncio
import logging
import time
from typing import Optional, Union
import httpx
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import async_sessionmaker
from app.config import Settings, get_settings
from app.errors import MissingSecretsError, NoShopsError, UpstreamShapeError
from app.schemas import RefreshOutcome, TokenGrant
from app.services.credential_store import ShopCredentials, list_credentials, upsert_credentials
from app.tiktok_client import TikTokAuthClient
from app.utils import utcnow

logger = logging.getLogger(__name__)

# Above this an epoch value is in milliseconds
_MILLIS_THRESHOLD = 10_000_000_000


def normalize_epoch_seconds(value: Union[int, float, str, None]) -> Optional[int]:
    """Expiry as Unix seconds; upstream sometimes sends milliseconds."""
    if value in (None, ""):
        return None
    try:
        number = int(float(value))
    except (TypeError, ValueError):
        return None
    if number <= 0:
        return None
    if number > _MILLIS_THRESHOLD:
        return number // 1000
    return number


def expiry_from_duration(value: Union[int, float, str, None]) -> Optional[int]:
    """Relative OAuth ``expires_in`` seconds as an absolute Unix expiry."""
    seconds = normalize_epoch_seconds(value)
    if seconds is None:
        return None
    return int(time.time()) + seconds


def normalize_refresh_response(payload: dict) -> TokenGrant:
    """
    Turn any of the refresh endpoint's response shapes into a TokenGrant.

    Errors may be reported as ``error``, ``error_code`` or
    ``error_description``; the token may sit under ``data`` or at the top
    level. No access_token anywhere means failure.
    """
    if payload.get("error") or payload.get("error_code") or payload.get("error_description"):
        raise UpstreamShapeError(
            payload.get("error_description")
            or payload.get("error")
            or f"Error code: {payload.get('error_code') or 'unknown'}"
        )

    data = payload.get("data")
    if not isinstance(data, dict) or not data.get("access_token"):
        data = payload
    if not data.get("access_token"):
        if payload.get("code") not in (None, 0) and payload.get("message"):
            raise UpstreamShapeError(f"{payload['message']} (code {payload['code']})")
        raise UpstreamShapeError("Invalid response format from TikTok Shop API")

    try:
        return TokenGrant(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or None,
            access_token_expire_in=normalize_epoch_seconds(data.get("access_token_expire_in"))
            or expiry_from_duration(data.get("expires_in")),
            refresh_token_expire_in=normalize_epoch_seconds(data.get("refresh_token_expire_in"))
            or expiry_from_duration(data.get("refresh_expires_in")),
            open_id=data.get("open_id"),
            seller_name=data.get("seller_name"),
            seller_base_region=data.get("seller_base_region"),
        )
    except ValidationError as e:
        raise UpstreamShapeError(f"Invalid token payload: {e}") from e


def _rotated(creds: ShopCredentials, grant: TokenGrant) -> ShopCredentials:
    """Apply a grant to stored credentials. The refresh token is not always rotated."""
    update = {
        "access_token": grant.access_token,
        "refresh_token": grant.refresh_token or creds.refresh_token,
    }
    if grant.access_token_expire_in is not None:
        update["access_token_expires_at"] = grant.access_token_expire_in
    if grant.refresh_token_expire_in is not None:
        update["refresh_token_expires_at"] = grant.refresh_token_expire_in
    for field in ("open_id", "seller_name", "seller_base_region"):
        if getattr(grant, field):
            update[field] = getattr(grant, field)
    return creds.model_copy(update=update)


async def refresh_shop_token(
    creds: ShopCredentials,
    app_key: str,
    app_secret: str,
    auth_client: Optional[TikTokAuthClient] = None,
) -> tuple[RefreshOutcome, Optional[ShopCredentials]]:
    """
    Refresh one shop. Never raises: failures come back as an unsuccessful
    outcome. On success also returns the rotated credentials to persist.
    """
    client = auth_client or TikTokAuthClient()
    try:
        payload = await client.refresh_token(app_key, app_secret, creds.refresh_token)
        grant = normalize_refresh_response(payload)
    except UpstreamShapeError as e:
        logger.error(f"Token refresh failed for shop {creds.shop_number} ({creds.shop_name}): {e}")
        return RefreshOutcome(
            shop_number=creds.shop_number, shop_name=creds.shop_name, success=False, error=str(e),
        ), None
    except httpx.HTTPError as e:
        logger.error(f"Token refresh request failed for shop {creds.shop_number} ({creds.shop_name}): {e}")
        return RefreshOutcome(
            shop_number=creds.shop_number, shop_name=creds.shop_name, success=False,
            error=str(e) or type(e).__name__,
        ), None
    except Exception as e:
        logger.exception(f"Unexpected error refreshing shop {creds.shop_number} ({creds.shop_name})")
        return RefreshOutcome(
            shop_number=creds.shop_number, shop_name=creds.shop_name, success=False,
            error=str(e) or "Unknown error",
        ), None

    rotated = _rotated(creds, grant)
    logger.info(
        f"Token refreshed for shop {creds.shop_number} ({creds.shop_name}); "
        f"refresh token {'rotated' if grant.refresh_token else 'kept'}"
    )
    return RefreshOutcome(
        shop_number=creds.shop_number,
        shop_name=creds.shop_name,
        success=True,
        new_access_token=rotated.access_token,
        new_refresh_token=rotated.refresh_token,
    ), rotated


async def refresh_and_persist(
    creds: ShopCredentials,
    app_key: str,
    app_secret: str,
    session_factory: async_sessionmaker,
    auth_client: Optional[TikTokAuthClient] = None,
) -> RefreshOutcome:
    """Refresh one shop and save the rotated tokens in its own transaction."""
    outcome, rotated = await refresh_shop_token(creds, app_key, app_secret, auth_client)
    if rotated is None:
        return outcome
    async with session_factory() as db:
        try:
            row = await upsert_credentials(db, rotated)
            row.last_refreshed_at = utcnow()
            await db.commit()
        except Exception as e:
            await db.rollback()
            logger.error(f"Refreshed shop {creds.shop_number} but failed to save tokens: {e}")
            return RefreshOutcome(
                shop_number=creds.shop_number,
                shop_name=creds.shop_name,
                success=False,
                error=f"Token refreshed but not saved: {e}",
            )
    return outcome


def shop_app_secrets(settings: Settings) -> tuple[str, str]:
    app_key = settings.tiktok_shop_app_key.strip().strip("'\"")
    app_secret = settings.tiktok_shop_app_secret.strip().strip("'\"")
    if not app_key or not app_secret:
        raise MissingSecretsError(
            "Missing TIKTOK_SHOP_APP_KEY or TIKTOK_SHOP_APP_SECRET in environment variables"
        )
    return app_key, app_secret


async def refresh_all_tokens(
    session_factory: async_sessionmaker,
    settings: Optional[Settings] = None,
    auth_client: Optional[TikTokAuthClient] = None,
) -> dict:
    """
    Refresh every stored shop concurrently.

    Raises MissingSecretsError before touching any shop, NoShopsError when the
    table is empty. Otherwise returns {summary: {total, successful, failed},
    results: [RefreshOutcome, ...]} in shop order.
    """
    settings = settings or get_settings()
    app_key, app_secret = shop_app_secrets(settings)

    async with session_factory() as db:
        shops = await list_credentials(db)
    if not shops:
        raise NoShopsError("No shops found in database. Please run the populate script first.")

    logger.info(f"Refreshing tokens for {len(shops)} shop(s)")
    gathered = await asyncio.gather(
        *(refresh_and_persist(s, app_key, app_secret, session_factory, auth_client) for s in shops),
        return_exceptions=True,
    )

    results: list[RefreshOutcome] = []
    for shop, item in zip(shops, gathered):
        if isinstance(item, BaseException):
            logger.error(f"Token refresh crashed for shop {shop.shop_number}: {item}")
            item = RefreshOutcome(
                shop_number=shop.shop_number, shop_name=shop.shop_name, success=False,
                error=str(item) or type(item).__name__,
            )
        results.append(item)

    successful = sum(1 for r in results if r.success)
    summary = {"total": len(results), "successful": successful, "failed": len(results) - successful}
    logger.info(f"Token refresh complete: {summary}")
    return {"summary": summary, "results": results}

