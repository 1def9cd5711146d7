"""
Tests for GMV Max campaign classification, report reconciliation,
aggregation, live sessions and manual (non GMV Max) spend.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from app.config import Settings
from app.schemas import Campaign, PromotionType, ReportRow
from app.services.gmv_max_service import (
    aggregate_report,
    build_live_sessions,
    classify_campaigns,
    extract_account_name,
    fetch_manual_spend,
    parse_report_rows,
    reconcile_rows,
    summarize_gmv_max,
    summarize_manual_spend,
)
from app.tiktok_client import PageResult


def _row(campaign_id, cost=0, gmv=0, orders=0, day="2026-01-01 00:00:00"):
    return {
        "dimensions": {"campaign_id": campaign_id, "stat_time_day": day},
        "metrics": {"cost": str(cost), "gross_revenue": str(gmv), "orders": str(orders)},
    }


def _campaign(campaign_id, name, ptype=PromotionType.PRODUCT_GMV_MAX):
    return Campaign(
        campaign_id=campaign_id, display_name=name, account_name=extract_account_name(name), promotion_type=ptype,
    )


def _business_client(campaigns_by_type=None, report_rows=None, integrated_rows=None, report_error=None):
    campaigns_by_type = campaigns_by_type or {}
    client = MagicMock()

    async def get_campaigns(advertiser_id, promotion_type, page_delay=0.0, deadline=None):
        return PageResult(rows=campaigns_by_type.get(promotion_type, []), pages_fetched=1)

    client.get_gmv_max_campaigns = AsyncMock(side_effect=get_campaigns)
    client.get_gmv_max_report = AsyncMock(
        return_value=PageResult(rows=report_rows or [], pages_fetched=1, error=report_error),
    )
    client.get_integrated_report = AsyncMock(return_value=PageResult(rows=integrated_rows or [], pages_fetched=1))
    return client


# ── Account names ─────────────────────────────────────────────────────

@pytest.mark.parametrize("name, expected", [
    ("[AccountX] Summer push", "AccountX"),
    ("Promo [Vigomax] live", "Vigomax"),
    ("No tag here", "Other"),
    ("[] empty", "Other"),
    (None, "Other"),
])
def test_extract_account_name(name, expected):
    assert extract_account_name(name) == expected


# ── Reconciliation ────────────────────────────────────────────────────

def test_reconcile_keeps_exactly_classified_campaigns():
    classified = {"A": _campaign("A", "[X] a"), "B": _campaign("B", "[X] b")}
    rows = parse_report_rows([_row("A"), _row("C"), _row("B"), _row("D"), _row("A", day="2026-01-02")])

    kept = reconcile_rows(rows, classified)

    assert sorted(r.campaign_id for r in kept) == ["A", "A", "B"]


def test_reconcile_with_no_classified_campaigns_keeps_nothing():
    rows = parse_report_rows([_row("A"), _row("B")])
    assert reconcile_rows(rows, {}) == []


def test_report_rows_without_keys_are_rejected():
    rows = parse_report_rows([{"dimensions": {"stat_time_day": "2026-01-01"}, "metrics": {"cost": "5"}}, _row(7)])
    assert [r.campaign_id for r in rows] == ["7"]


# ── Aggregation ───────────────────────────────────────────────────────

def test_zero_cost_roi_is_zero():
    classified = {"A": _campaign("A", "[X] a")}
    summary = aggregate_report(parse_report_rows([_row("A", cost=0, gmv=500)]), classified)
    assert summary["roi"] == 0
    assert summary["accounts"][0]["roi"] == 0
    assert summary["campaigns"][0]["roi"] == 0


def test_aggregate_sorting_and_totals():
    classified = {
        "A1": _campaign("A1", "[Alpha] small"),
        "A2": _campaign("A2", "[Alpha] big"),
        "B1": _campaign("B1", "[Beta] only"),
        "O1": _campaign("O1", "untagged"),
    }
    rows = parse_report_rows([
        _row("A1", cost=10, gmv=30, orders=1),
        _row("A2", cost=20, gmv=100, orders=4),
        _row("A2", cost=5, gmv=20, orders=1, day="2026-01-02 00:00:00"),
        _row("B1", cost=50, gmv=400, orders=8),
        _row("O1", cost=1, gmv=2, orders=1),
    ])

    summary = aggregate_report(rows, classified)

    assert summary["gmv"] == 552
    assert summary["cost"] == 86
    assert summary["orderCount"] == 15
    assert summary["campaignCount"] == 4
    assert summary["roi"] == pytest.approx(552 / 86)
    assert [a["name"] for a in summary["accounts"]] == ["Beta", "Alpha", "Other"]
    alpha = summary["accounts"][1]
    assert (alpha["gmv"], alpha["cost"], alpha["campaigns"]) == (150, 35, 2)
    assert [c["campaignId"] for c in summary["campaigns"]] == ["A2", "A1", "B1", "O1"]
    assert summary["campaigns"][0]["gmv"] == 120


@pytest.mark.anyio
async def test_classify_skips_campaigns_without_id():
    client = _business_client({PromotionType.LIVE_GMV_MAX: [
        {"campaign_id": "L1", "campaign_name": "[Live] one"},
        {"campaign_name": "missing id"},
        {"campaign_id": 42},
    ]})

    classified, error = await classify_campaigns(client, "adv", PromotionType.LIVE_GMV_MAX)

    assert error is None
    assert set(classified) == {"L1", "42"}
    assert classified["L1"].account_name == "Live"
    assert classified["42"].display_name == "Campaign 42"


@pytest.mark.anyio
async def test_summarize_gmv_max_drops_other_promotion_type_rows():
    client = _business_client(
        {PromotionType.PRODUCT_GMV_MAX: [{"campaign_id": "P1", "campaign_name": "[Shop] product"}]},
        report_rows=[_row("P1", cost=10, gmv=50), _row("L9", cost=999, gmv=999)],
    )

    summary = await summarize_gmv_max(
        client, "adv", "store", PromotionType.PRODUCT_GMV_MAX, "2026-01-01", "2026-01-31",
    )

    assert summary["cost"] == 10
    assert summary["gmv"] == 50
    assert summary["promotionType"] == "PRODUCT_GMV_MAX"
    assert summary["partial"] is False


@pytest.mark.anyio
async def test_summarize_gmv_max_reports_partial_data():
    client = _business_client(
        {PromotionType.LIVE_GMV_MAX: [{"campaign_id": "L1", "campaign_name": "[Live] one"}]},
        report_rows=[_row("L1", cost=10, gmv=50)],
        report_error="Rate limit exceeded",
    )

    summary = await summarize_gmv_max(client, "adv", "store", PromotionType.LIVE_GMV_MAX, "2026-01-01", "2026-01-31")

    assert summary["cost"] == 10
    assert summary["partial"] is True
    assert summary["error"] == "Rate limit exceeded"


# ── Live sessions ─────────────────────────────────────────────────────

def _room(room_id, launched, cost=0, gmv=0, orders=0, name=None):
    metrics = {"cost": str(cost), "gross_revenue": str(gmv), "orders": str(orders), "live_launched_time": launched}
    if name:
        metrics["live_name"] = name
    return {"dimensions": {"room_id": room_id, "stat_time_day": "2026-01-01 00:00:00"}, "metrics": metrics}


def test_live_sessions_newest_first():
    rows = parse_report_rows([
        _room("r1", "2026-01-01 10:00:00"),
        _room("r2", "2026-01-02 10:00:00"),
    ])
    assert [s["roomId"] for s in build_live_sessions(rows)] == ["r2", "r1"]


def test_live_sessions_merge_duplicate_rooms():
    rows = parse_report_rows([
        _room("r1", "2026-01-02 09:00:00", cost=10, gmv=40, orders=2),
        _room("r1", "2026-01-01 20:00:00", cost=5, gmv=20, orders=1, name="Evening live"),
    ])

    sessions = build_live_sessions(rows)

    assert len(sessions) == 1
    room = sessions[0]
    assert room["launchedTime"] == "2026-01-01 20:00:00"
    assert (room["cost"], room["gmv"], room["orders"]) == (15, 60, 3)
    assert room["roi"] == 4
    assert room["liveName"] == "Evening live"


def test_live_sessions_unparseable_time_sorts_last():
    rows = parse_report_rows([
        _room("bad", "not a time"),
        _room("good", "2026-01-01 10:00:00"),
    ])
    assert [s["roomId"] for s in build_live_sessions(rows)] == ["good", "bad"]


# ── Manual spend ──────────────────────────────────────────────────────

def _integrated(campaign_id, spend, impressions=0, clicks=0, billed=None, day="2026-01-01 00:00:00"):
    return {
        "dimensions": {"campaign_id": campaign_id, "stat_time_day": day},
        "metrics": {
            "spend": str(spend),
            "billed_cost": str(spend if billed is None else billed),
            "impressions": str(impressions),
            "clicks": str(clicks),
        },
    }


def test_manual_spend_is_set_difference():
    rows = parse_report_rows([
        _integrated("G1", 100, 1000, 10),
        _integrated("M1", 30, 2000, 20),
        _integrated("M1", 10, 2000, 20, day="2026-01-02 00:00:00"),
        _integrated("M2", 20, 1000, 20),
    ])

    spend = summarize_manual_spend(rows, {"G1", "G2"}, "adv", "Account 1")

    assert spend.total_spend == 60
    assert spend.total_impressions == 5000
    assert spend.total_clicks == 60
    assert spend.campaign_count == 2
    assert spend.avg_cpm == pytest.approx(60 / 5000 * 1000)
    assert spend.avg_cpc == pytest.approx(1.0)


def test_manual_spend_without_gmv_max_campaigns_is_everything():
    rows = parse_report_rows([_integrated("M1", 30), _integrated("M2", 20)])
    spend = summarize_manual_spend(rows, set(), "adv")
    assert spend.total_spend == 50
    assert spend.avg_cpm == 0
    assert spend.avg_cpc == 0


@pytest.mark.anyio
async def test_fetch_manual_spend_excludes_both_gmv_max_types():
    client = _business_client(
        {
            PromotionType.PRODUCT_GMV_MAX: [{"campaign_id": "P1", "campaign_name": "p"}],
            PromotionType.LIVE_GMV_MAX: [{"campaign_id": "L1", "campaign_name": "l"}],
        },
        integrated_rows=[_integrated("P1", 100), _integrated("L1", 200), _integrated("M1", 7)],
    )
    settings = Settings(campaign_page_delay=0, integrated_report_page_delay=0)

    spend = await fetch_manual_spend(client, "adv", "2026-01-01", "2026-01-31", "Account 1", settings=settings)

    assert spend.total_spend == 7
    assert spend.campaign_count == 1
    assert spend.error is None
    public = spend.public()
    assert public["totalSpend"] == 7
    assert public["accountName"] == "Account 1"
    assert public["partial"] is False


# ── Page pacing ───────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_fetch_manual_spend_paces_campaign_and_report_pages():
    client = _business_client()
    settings = Settings(campaign_page_delay=0.3, integrated_report_page_delay=0.5)

    await fetch_manual_spend(client, "adv", "2026-01-01", "2026-01-31", settings=settings)

    campaign_calls = client.get_gmv_max_campaigns.await_args_list
    assert {c.args[1] for c in campaign_calls} == {PromotionType.PRODUCT_GMV_MAX, PromotionType.LIVE_GMV_MAX}
    assert all(c.kwargs["page_delay"] == 0.3 for c in campaign_calls)
    assert client.get_integrated_report.await_args.kwargs["page_delay"] == 0.5


@pytest.mark.anyio
async def test_summarize_gmv_max_does_not_pace_pages():
    client = _business_client()

    await summarize_gmv_max(client, "adv", "store", PromotionType.LIVE_GMV_MAX, "2026-01-01", "2026-01-31")

    assert client.get_gmv_max_campaigns.await_args.kwargs["page_delay"] == 0
    assert "page_delay" not in client.get_gmv_max_report.await_args.kwargs
