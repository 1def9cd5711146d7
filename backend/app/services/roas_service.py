"""
ROAS Service — combines shop GMV with GMV Max and manual ad spend.
"""

import asyncio
import logging
from datetime import date
from typing import Optional
from app.config import Settings, get_settings
from app.errors import ConfigurationError
from app.schemas import GmvMode, ManualSpend, PromotionType, ROASResult
from app.services.credential_store import ADS_ACCOUNTS, AdsAccount, ShopCredentials, ads_access_token
from app.services.gmv_max_service import fetch_manual_spend, summarize_gmv_max
from app.services.order_service import fetch_shop_gmv
from app.tiktok_client import TikTokBusinessClient
from app.utils import safe_ratio

logger = logging.getLogger(__name__)

SST_RATE = 0.08
WHT_RATE = 0.08


def compose_roas(
    gmv: float,
    live_gmv_max_cost: float,
    product_gmv_max_cost: float,
    manual_spend: float,
    gmv_mode: GmvMode = GmvMode.GROSS,
) -> ROASResult:
    """
    ROAS before and after taxes.

    Only the larger of the two GMV Max costs is counted, not their sum.
    SST and WHT are each 8% of total ad spend.
    """
    gmv_max_cost = max(live_gmv_max_cost, product_gmv_max_cost)
    total_ads_spend = gmv_max_cost + manual_spend
    sst = total_ads_spend * SST_RATE
    wht = total_ads_spend * WHT_RATE
    total_cost_with_taxes = total_ads_spend + sst + wht
    return ROASResult(
        gmv=gmv,
        gmv_mode=gmv_mode,
        live_gmv_max_cost=live_gmv_max_cost,
        product_gmv_max_cost=product_gmv_max_cost,
        gmv_max_cost=gmv_max_cost,
        manual_campaign_spend=manual_spend,
        total_ads_spend=total_ads_spend,
        sst=sst,
        wht=wht,
        total_cost_with_taxes=total_cost_with_taxes,
        roas=safe_ratio(gmv, total_ads_spend),
        actual_roas=safe_ratio(gmv, total_cost_with_taxes),
    )


async def _gmv_max_cost(
    account: AdsAccount,
    promotion_type: PromotionType,
    start_date: str,
    end_date: str,
    deadline: Optional[float],
    settings: Settings,
) -> tuple[float, Optional[str]]:
    if not account.has_gmv_max:
        return 0.0, None
    token = ads_access_token(account)
    if not token:
        raise ConfigurationError(f"Missing {account.access_token_env} in environment variables")
    client = TikTokBusinessClient(token, settings=settings)
    summary = await summarize_gmv_max(
        client, account.advertiser_id, account.store_id, promotion_type, start_date, end_date, deadline=deadline,
    )
    return summary["cost"], summary["error"]


async def _total_manual_spend(
    start_date: str,
    end_date: str,
    deadline: Optional[float],
    settings: Settings,
) -> tuple[float, list[str]]:
    """Manual spend summed over every configured ads account."""
    total = 0.0
    errors = []
    for account in ADS_ACCOUNTS.values():
        token = ads_access_token(account)
        if not token:
            logger.warning(f"Skipping manual spend for {account.name}: {account.access_token_env} not set")
            continue
        spend: ManualSpend = await fetch_manual_spend(
            TikTokBusinessClient(token, settings=settings),
            account.advertiser_id, start_date, end_date,
            account_name=account.name, deadline=deadline, settings=settings,
        )
        total += spend.total_spend
        if spend.error:
            errors.append(f"{account.name}: {spend.error}")
    return total, errors


async def build_roas_report(
    creds: ShopCredentials,
    app_key: str,
    app_secret: str,
    account: AdsAccount,
    start: date,
    end: date,
    gmv_mode: GmvMode = GmvMode.GROSS,
    deadline: Optional[float] = None,
    settings: Optional[Settings] = None,
) -> dict:
    """
    Fetch GMV, LIVE cost, PRODUCT cost and manual spend concurrently and
    compose them. A failed component counts as 0 and is listed in ``errors``.
    """
    settings = settings or get_settings()
    start_date, end_date = start.isoformat(), end.isoformat()

    labels = ("gmv", "liveGMVMaxCost", "productGMVMaxCost", "manualCampaignSpend")
    gathered = await asyncio.gather(
        fetch_shop_gmv(creds, app_key, app_secret, start, end, gmv_mode, deadline=deadline, settings=settings),
        _gmv_max_cost(account, PromotionType.LIVE_GMV_MAX, start_date, end_date, deadline, settings),
        _gmv_max_cost(account, PromotionType.PRODUCT_GMV_MAX, start_date, end_date, deadline, settings),
        _total_manual_spend(start_date, end_date, deadline, settings),
        return_exceptions=True,
    )

    errors: list[str] = []
    values: dict[str, float] = {}
    for label, item in zip(labels, gathered):
        if isinstance(item, BaseException):
            logger.error(f"ROAS component {label} failed: {item}")
            errors.append(f"{label}: {item}")
            values[label] = 0.0
            continue
        if label == "gmv":
            values[label] = item["gmv"]
            if item["error"]:
                errors.append(f"gmv: {item['error']}")
        elif label == "manualCampaignSpend":
            values[label], component_errors = item
            errors.extend(f"manualCampaignSpend: {e}" for e in component_errors)
        else:
            values[label], error = item
            if error:
                errors.append(f"{label}: {error}")

    result = compose_roas(
        values["gmv"],
        values["liveGMVMaxCost"],
        values["productGMVMaxCost"],
        values["manualCampaignSpend"],
        gmv_mode=gmv_mode,
    )
    logger.info(f"ROAS for shop {creds.shop_number} {start_date}..{end_date}: "
                f"gmv={result.gmv:.2f} spend={result.total_ads_spend:.2f} roas={result.roas:.2f}")

    report = result.public()
    report.update({
        "shopName": creds.shop_name,
        "currency": settings.currency,
        "dateRange": {"start": start_date, "end": end_date},
        "errors": errors,
        "partial": bool(errors),
    })
    return report
