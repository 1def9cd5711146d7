"""
GMV Max Service — campaign classification and report reconciliation.

The GMV Max report endpoint can return rows for campaigns of the other
promotion type even when filtered by ``gmv_max_promotion_type``. Report rows
are therefore only trusted when their campaign_id is in the campaign list for
the exact promotion type asked for; everything else is dropped.

Manual (non GMV Max) spend is derived the other way round: the advertiser's
full integrated report minus every GMV Max campaign id.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Iterable, Optional
from pydantic import ValidationError
from app.config import Settings, get_settings
from app.schemas import Campaign, ManualSpend, PromotionType, ReportRow
from app.tiktok_client import TikTokBusinessClient
from app.utils import safe_ratio

logger = logging.getLogger(__name__)

_ACCOUNT_TAG = re.compile(r"\[([^\]]+)\]")
DEFAULT_ACCOUNT_NAME = "Other"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def extract_account_name(campaign_name: Optional[str]) -> str:
    """'[AccountX] Summer push' -> 'AccountX'; no bracket tag -> 'Other'."""
    match = _ACCOUNT_TAG.search(campaign_name or "")
    return match.group(1) if match else DEFAULT_ACCOUNT_NAME


def parse_report_rows(items: Iterable[dict]) -> list[ReportRow]:
    rows = []
    for item in items:
        try:
            rows.append(ReportRow.from_api(item))
        except (ValidationError, ValueError, AttributeError) as e:
            logger.warning(f"Skipping malformed report row: {e}")
    return rows


# ── Classification ────────────────────────────────────────────────────

async def classify_campaigns(
    client: TikTokBusinessClient,
    advertiser_id: str,
    promotion_type: PromotionType,
    page_delay: float = 0.0,
    deadline: Optional[float] = None,
) -> tuple[dict[str, Campaign], Optional[str]]:
    """campaign_id -> Campaign for one promotion type, plus any fetch error."""
    result = await client.get_gmv_max_campaigns(
        advertiser_id, promotion_type, page_delay=page_delay, deadline=deadline,
    )
    campaigns: dict[str, Campaign] = {}
    for item in result.rows:
        campaign_id = item.get("campaign_id") if isinstance(item, dict) else None
        if not campaign_id:
            logger.warning(f"Skipping campaign without campaign_id: {item!r}")
            continue
        name = item.get("campaign_name") or f"Campaign {campaign_id}"
        campaigns[str(campaign_id)] = Campaign(
            campaign_id=str(campaign_id),
            display_name=name,
            account_name=extract_account_name(name),
            promotion_type=promotion_type,
        )
    logger.info(f"Found {len(campaigns)} {promotion_type.value} campaigns for advertiser {advertiser_id}")
    return campaigns, result.error


def reconcile_rows(rows: Iterable[ReportRow], classified: dict[str, Campaign]) -> list[ReportRow]:
    """Keep exactly the rows whose campaign_id was classified for the requested type."""
    rows = list(rows)
    kept = [r for r in rows if r.campaign_id is not None and r.campaign_id in classified]
    if len(kept) != len(rows):
        logger.info(f"Reconciled report rows: kept {len(kept)} of {len(rows)}")
    return kept


# ── Aggregation ───────────────────────────────────────────────────────

def aggregate_report(rows: Iterable[ReportRow], classified: dict[str, Campaign]) -> dict:
    """
    Totals plus two breakdowns of reconciled rows: by account (tag parsed from
    the campaign name, sorted by GMV desc) and by campaign (sorted by account
    name, then GMV desc).
    """
    total_cost = total_gmv = 0.0
    total_orders = 0
    accounts: dict[str, dict] = {}
    campaigns: dict[str, dict] = {}

    for row in rows:
        info = classified.get(row.campaign_id)
        account_name = info.account_name if info else DEFAULT_ACCOUNT_NAME
        campaign_name = info.display_name if info else f"Campaign {row.campaign_id}"

        total_cost += row.cost
        total_gmv += row.gross_revenue
        total_orders += row.orders

        acc = accounts.setdefault(account_name, {"cost": 0.0, "gmv": 0.0, "orders": 0, "campaign_ids": set()})
        acc["cost"] += row.cost
        acc["gmv"] += row.gross_revenue
        acc["orders"] += row.orders
        acc["campaign_ids"].add(row.campaign_id)

        camp = campaigns.setdefault(row.campaign_id, {
            "campaignId": row.campaign_id,
            "campaignName": campaign_name,
            "accountName": account_name,
            "cost": 0.0,
            "gmv": 0.0,
            "orders": 0,
        })
        camp["cost"] += row.cost
        camp["gmv"] += row.gross_revenue
        camp["orders"] += row.orders

    accounts_list = sorted(
        (
            {
                "name": name,
                "cost": a["cost"],
                "gmv": a["gmv"],
                "orders": a["orders"],
                "campaigns": len(a["campaign_ids"]),
                "roi": safe_ratio(a["gmv"], a["cost"]),
            }
            for name, a in accounts.items()
        ),
        key=lambda a: -a["gmv"],
    )
    campaigns_list = sorted(
        ({**c, "roi": safe_ratio(c["gmv"], c["cost"])} for c in campaigns.values()),
        key=lambda c: (c["accountName"], -c["gmv"]),
    )

    return {
        "gmv": total_gmv,
        "cost": total_cost,
        "roi": safe_ratio(total_gmv, total_cost),
        "orderCount": total_orders,
        "campaignCount": len(campaigns),
        "accounts": accounts_list,
        "campaigns": campaigns_list,
    }


async def summarize_gmv_max(
    client: TikTokBusinessClient,
    advertiser_id: str,
    store_id: str,
    promotion_type: PromotionType,
    start_date: str,
    end_date: str,
    deadline: Optional[float] = None,
) -> dict:
    """Classify -> fetch report -> reconcile -> aggregate for one promotion type."""
    classified, campaign_error = await classify_campaigns(
        client, advertiser_id, promotion_type, deadline=deadline,
    )
    report = await client.get_gmv_max_report(
        advertiser_id, store_id, promotion_type, start_date, end_date, deadline=deadline,
    )
    rows = reconcile_rows(parse_report_rows(report.rows), classified)
    logger.info(f"{promotion_type.value}: {len(report.rows)} report rows, {len(rows)} after reconciliation")

    summary = aggregate_report(rows, classified)
    errors = [e for e in (campaign_error, report.error) if e]
    summary.update({
        "promotionType": promotion_type.value,
        "error": "; ".join(errors) if errors else None,
        "partial": bool(errors),
    })
    return summary


# ── Live sessions ─────────────────────────────────────────────────────

def _launched_at(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def build_live_sessions(rows: Iterable[ReportRow]) -> list[dict]:
    """
    One entry per room_id, metrics summed across its day rows. The earliest
    launched time among a room's rows is kept. Sorted most recent first; rooms
    without a parseable time go last.
    """
    rooms: dict[str, dict] = {}
    for row in rows:
        if not row.room_id:
            continue
        launched = row.launched_time
        room = rooms.get(row.room_id)
        if room is None:
            room = rooms[row.room_id] = {
                "roomId": row.room_id,
                "liveName": row.live_name or f"Room {row.room_id}",
                "liveStatus": row.live_status or "N/A",
                "liveDuration": row.live_duration or "N/A",
                "launchedTime": launched,
                "cost": 0.0,
                "gmv": 0.0,
                "orders": 0,
            }
        elif launched and _is_earlier(launched, room["launchedTime"]):
            room["launchedTime"] = launched
            if room["liveName"] == f"Room {row.room_id}" and row.live_name:
                room["liveName"] = row.live_name
            if room["liveStatus"] == "N/A" and row.live_status:
                room["liveStatus"] = row.live_status
            if room["liveDuration"] == "N/A" and row.live_duration:
                room["liveDuration"] = row.live_duration
        room["cost"] += row.cost
        room["gmv"] += row.gross_revenue
        room["orders"] += row.orders

    sessions = [{**r, "roi": safe_ratio(r["gmv"], r["cost"])} for r in rooms.values()]
    sessions.sort(key=lambda r: _launched_at(r["launchedTime"]) or _EPOCH, reverse=True)
    return sessions


def _is_earlier(candidate: str, current: Optional[str]) -> bool:
    if not current:
        return True
    a, b = _launched_at(candidate), _launched_at(current)
    return a is not None and b is not None and a < b


async def fetch_live_sessions(
    client: TikTokBusinessClient,
    advertiser_id: str,
    store_id: str,
    campaign_id: str,
    start_date: str,
    end_date: str,
    deadline: Optional[float] = None,
) -> dict:
    report = await client.get_live_room_report(
        advertiser_id, store_id, campaign_id, start_date, end_date, deadline=deadline,
    )
    return {
        "campaignId": campaign_id,
        "liveSessions": build_live_sessions(parse_report_rows(report.rows)),
        "error": report.error,
        "partial": report.error is not None,
    }


# ── Manual / bidding spend ────────────────────────────────────────────

async def gmv_max_campaign_ids(
    client: TikTokBusinessClient,
    advertiser_id: str,
    page_delay: float = 0.0,
    deadline: Optional[float] = None,
) -> tuple[set[str], list[str]]:
    """Every GMV Max campaign id (PRODUCT and LIVE) for an advertiser."""
    ids: set[str] = set()
    errors = []
    for promotion_type in (PromotionType.PRODUCT_GMV_MAX, PromotionType.LIVE_GMV_MAX):
        classified, error = await classify_campaigns(
            client, advertiser_id, promotion_type, page_delay=page_delay, deadline=deadline,
        )
        ids.update(classified)
        if error:
            errors.append(f"{promotion_type.value} campaigns: {error}")
    return ids, errors


def summarize_manual_spend(
    rows: Iterable[ReportRow],
    gmv_max_ids: set[str],
    advertiser_id: str,
    account_name: str = "",
) -> ManualSpend:
    """Integrated report rows minus GMV Max campaigns."""
    manual = [r for r in rows if r.campaign_id and r.campaign_id not in gmv_max_ids]
    spend = sum(r.spend for r in manual)
    impressions = sum(r.impressions for r in manual)
    clicks = sum(r.clicks for r in manual)
    return ManualSpend(
        account_name=account_name,
        advertiser_id=advertiser_id,
        total_spend=spend,
        total_billed_cost=sum(r.billed_cost for r in manual),
        total_impressions=impressions,
        total_clicks=clicks,
        campaign_count=len({r.campaign_id for r in manual}),
        avg_cpm=safe_ratio(spend, impressions) * 1000,
        avg_cpc=safe_ratio(spend, clicks),
    )


async def fetch_manual_spend(
    client: TikTokBusinessClient,
    advertiser_id: str,
    start_date: str,
    end_date: str,
    account_name: str = "",
    deadline: Optional[float] = None,
    settings: Optional[Settings] = None,
) -> ManualSpend:
    settings = settings or get_settings()
    gmv_max_ids, errors = await gmv_max_campaign_ids(
        client, advertiser_id, page_delay=settings.campaign_page_delay, deadline=deadline,
    )
    report = await client.get_integrated_report(
        advertiser_id, start_date, end_date,
        page_delay=settings.integrated_report_page_delay, deadline=deadline,
    )
    if report.error:
        errors.append(f"integrated report: {report.error}")

    result = summarize_manual_spend(parse_report_rows(report.rows), gmv_max_ids, advertiser_id, account_name)
    result.error = "; ".join(errors) if errors else None
    logger.info(f"Manual spend for advertiser {advertiser_id}: {result.total_spend:.2f} "
                f"over {result.campaign_count} campaigns (excluded {len(gmv_max_ids)} GMV Max ids)")
    return result
