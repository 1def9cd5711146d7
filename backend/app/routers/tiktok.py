"""
TikTok Router — GMV, GMV Max, manual spend and ROAS for the dashboard.

Every metric route re-reads credentials for the request (database first,
environment fallback) and runs under a request deadline; upstream failures
part-way through come back as ``partial: true`` with an ``error`` field.
"""

import logging
from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from app.config import get_settings
from app.database import async_session, get_db
from app.errors import ConfigurationError, NoShopsError
from app.schemas import GmvMode, PromotionType
from app.services.credential_store import (
    KNOWN_SHOPS, AdsAccount, ShopCredentials, ads_access_token, get_ads_account, resolve_credentials,
)
from app.services.gmv_max_service import fetch_live_sessions, fetch_manual_spend, summarize_gmv_max
from app.services.order_service import fetch_shop_gmv
from app.services.roas_service import build_roas_report
from app.services.token_service import refresh_all_tokens, shop_app_secrets
from app.tiktok_client import TikTokBusinessClient
from app.utils import deadline_from_now, parse_iso_date

logger = logging.getLogger(__name__)
router = APIRouter()


# ── Helpers ───────────────────────────────────────────────────────────

def _shop_number(value: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        number = None
    if number not in KNOWN_SHOPS:
        valid = ", ".join(str(n) for n in KNOWN_SHOPS)
        raise HTTPException(400, f"Invalid shop number: {value}. Valid options: {valid}")
    return number


def _ads_account(shop_number_param: str) -> AdsAccount:
    shop_number = _shop_number(shop_number_param)
    account = get_ads_account(shop_number)
    if account is None:
        raise HTTPException(400, f"Shop {shop_number} has no ads account configured")
    return account


def _business_client(account: AdsAccount) -> TikTokBusinessClient:
    token = ads_access_token(account)
    if not token:
        raise ConfigurationError(f"Missing Access Token for {account.name} ({account.access_token_env})")
    return TikTokBusinessClient(token)


def _date_range(start_date: Optional[str], end_date: Optional[str], required: bool) -> tuple[Optional[date], Optional[date]]:
    if required and (not start_date or not end_date):
        raise HTTPException(400, "Missing required parameters: startDate, endDate")
    start = parse_iso_date(start_date, "startDate") if start_date else None
    end = parse_iso_date(end_date, "endDate") if end_date else None
    if start and end and start > end:
        raise HTTPException(400, "startDate must not be after endDate")
    return start, end


async def _shop_credentials(db: AsyncSession, shop_number: int) -> ShopCredentials:
    creds = await resolve_credentials(db, shop_number)
    if creds is None:
        raise ConfigurationError(f"Missing Credentials for shop {shop_number}")
    return creds


def _server_error(e: Exception, what: str) -> HTTPException:
    logger.exception(f"{what} failed")
    return HTTPException(500, str(e))


# ── Shop GMV ──────────────────────────────────────────────────────────

async def _gmv(db: AsyncSession, start_date, end_date, shop_number_param: str, mode: GmvMode) -> dict:
    shop_number = _shop_number(shop_number_param)
    start, end = _date_range(start_date, end_date, required=False)
    try:
        settings = get_settings()
        app_key, app_secret = shop_app_secrets(settings)
        creds = await _shop_credentials(db, shop_number)
        result = await fetch_shop_gmv(
            creds, app_key, app_secret, start, end, mode,
            deadline=deadline_from_now(settings.request_deadline_seconds),
        )
        result["shopNumber"] = shop_number
        return result
    except HTTPException:
        raise
    except Exception as e:
        raise _server_error(e, f"GMV ({mode.value}) for shop {shop_number}")


@router.get("/gmv")
async def get_gmv(
    start_date: Optional[str] = Query(None, alias="startDate", description="YYYY-MM-DD, defaults to today (GMT+8)"),
    end_date: Optional[str] = Query(None, alias="endDate", description="YYYY-MM-DD, defaults to today (GMT+8)"),
    shop_number: str = Query("1", alias="shopNumber"),
    db: AsyncSession = Depends(get_db),
):
    """Net GMV: cancelled/refunded orders excluded, platform discount added back."""
    return await _gmv(db, start_date, end_date, shop_number, GmvMode.NET)


@router.get("/gmv-ikram")
async def get_gmv_ikram(
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    shop_number: str = Query("1", alias="shopNumber"),
    db: AsyncSession = Depends(get_db),
):
    """Gross GMV: every order at its sale price."""
    return await _gmv(db, start_date, end_date, shop_number, GmvMode.GROSS)


# ── GMV Max ───────────────────────────────────────────────────────────

@router.get("/gmv-max")
async def get_gmv_max(
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    promotion_type: Optional[str] = Query(None, description="PRODUCT_GMV_MAX or LIVE_GMV_MAX"),
    shop_number: str = Query("1", alias="shopNumber"),
):
    start, end = _date_range(start_date, end_date, required=True)
    try:
        ptype = PromotionType(promotion_type)
    except ValueError:
        raise HTTPException(400, "promotion_type must be PRODUCT_GMV_MAX or LIVE_GMV_MAX")
    account = _ads_account(shop_number)
    if not account.has_gmv_max:
        raise HTTPException(400, "Shop does not have GMV campaigns")

    try:
        summary = await summarize_gmv_max(
            _business_client(account),
            account.advertiser_id,
            account.store_id,
            ptype,
            start.isoformat(),
            end.isoformat(),
            deadline=deadline_from_now(get_settings().request_deadline_seconds),
        )
        summary["dateRange"] = {"start": start.isoformat(), "end": end.isoformat()}
        return summary
    except HTTPException:
        raise
    except Exception as e:
        raise _server_error(e, f"GMV Max {ptype.value}")


@router.get("/gmv-max/rooms")
async def get_gmv_max_rooms(
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    campaign_id: Optional[str] = Query(None, alias="campaignId"),
    shop_number: str = Query("1", alias="shopNumber"),
):
    """Per-room breakdown of one LIVE GMV Max campaign, newest session first."""
    if not start_date or not end_date or not campaign_id:
        raise HTTPException(400, "Missing required parameters: startDate, endDate, campaignId")
    start, end = _date_range(start_date, end_date, required=True)
    account = _ads_account(shop_number)
    if not account.has_gmv_max:
        raise HTTPException(400, "Shop does not have GMV campaigns")

    try:
        result = await fetch_live_sessions(
            _business_client(account),
            account.advertiser_id,
            account.store_id,
            campaign_id,
            start.isoformat(),
            end.isoformat(),
            deadline=deadline_from_now(get_settings().request_deadline_seconds),
        )
        result["dateRange"] = {"start": start.isoformat(), "end": end.isoformat()}
        return result
    except HTTPException:
        raise
    except Exception as e:
        raise _server_error(e, f"Live rooms for campaign {campaign_id}")


# ── Manual spend and ROAS ─────────────────────────────────────────────

@router.get("/manual-campaign-spend")
async def get_manual_campaign_spend(
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    shop_number: str = Query("1", alias="shopNumber"),
):
    """Spend on every campaign of the shop's advertiser that is not GMV Max."""
    start, end = _date_range(start_date, end_date, required=True)
    account = _ads_account(shop_number)
    try:
        settings = get_settings()
        spend = await fetch_manual_spend(
            _business_client(account),
            account.advertiser_id,
            start.isoformat(),
            end.isoformat(),
            account_name=account.name,
            deadline=deadline_from_now(settings.request_deadline_seconds),
            settings=settings,
        )
        result = spend.public()
        result["dateRange"] = {"start": start.isoformat(), "end": end.isoformat()}
        return result
    except HTTPException:
        raise
    except Exception as e:
        raise _server_error(e, f"Manual campaign spend for {account.name}")


@router.get("/roas")
async def get_roas(
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    shop_number: str = Query("1", alias="shopNumber"),
    gmv_mode: GmvMode = Query(GmvMode.GROSS, alias="gmvMode"),
    db: AsyncSession = Depends(get_db),
):
    """
    ROAS = GMV / (max(LIVE cost, PRODUCT cost) + manual spend), before and
    after 8% SST and 8% WHT. Manual spend covers every configured ads account.
    """
    start, end = _date_range(start_date, end_date, required=True)
    account = _ads_account(shop_number)
    try:
        settings = get_settings()
        app_key, app_secret = shop_app_secrets(settings)
        if account.has_gmv_max and not ads_access_token(account):
            raise ConfigurationError(f"Missing Access Token for {account.name} ({account.access_token_env})")
        creds = await _shop_credentials(db, account.shop_number)
        report = await build_roas_report(
            creds, app_key, app_secret, account, start, end,
            gmv_mode=gmv_mode,
            deadline=deadline_from_now(settings.request_deadline_seconds),
            settings=settings,
        )
        report["shopNumber"] = account.shop_number
        return report
    except HTTPException:
        raise
    except Exception as e:
        raise _server_error(e, f"ROAS for shop {account.shop_number}")


# ── Token refresh ─────────────────────────────────────────────────────

async def run_token_refresh() -> dict:
    """Batch refresh with HTTP error mapping; shared with the cron endpoint."""
    try:
        outcome = await refresh_all_tokens(async_session)
    except ConfigurationError as e:
        logger.error(f"Token refresh aborted: {e}")
        raise HTTPException(500, str(e))
    except NoShopsError as e:
        raise HTTPException(404, str(e))
    except Exception as e:
        raise _server_error(e, "Token refresh")
    return {
        "success": True,
        "summary": outcome["summary"],
        "results": [r.public() for r in outcome["results"]],
    }


@router.post("/refresh-all-tokens")
async def post_refresh_all_tokens():
    """Refresh every stored shop's access token concurrently."""
    return await run_token_refresh()
