"""
Order Service — shop GMV from the TikTok Shop order search API.

Two aggregation policies are supported side by side (see GmvMode):
NET drops cancelled/refunded orders and values line items at
sale_price + platform_discount; GROSS counts every order at sale_price.
"""

import logging
from datetime import date, datetime
from typing import Optional
from pydantic import ValidationError
from app.config import Settings, get_settings
from app.schemas import GmvMode, Order
from app.services.credential_store import ShopCredentials
from app.tiktok_client import TikTokShopClient
from app.utils import shop_day_window

logger = logging.getLogger(__name__)


def parse_orders(raw_orders: list[dict]) -> list[Order]:
    orders = []
    for raw in raw_orders:
        try:
            orders.append(Order.model_validate(raw))
        except ValidationError as e:
            logger.warning(f"Skipping malformed order {raw.get('id') if isinstance(raw, dict) else raw!r}: {e}")
    return orders


def aggregate_orders(orders: list[Order], mode: GmvMode) -> dict:
    """GMV, order counts, unique buyers and per-order detail for one policy."""
    buyers = set()
    total_gmv = 0.0
    counted = 0
    details = []

    for order in orders:
        if order.buyer:
            buyers.add(order.buyer)
        order_gmv = order.gmv(mode)
        included = mode is GmvMode.GROSS or not order.is_excluded_from_net
        if included:
            total_gmv += order_gmv
            counted += 1
        details.append({
            "id": order.id,
            "status": order.status,
            "createTime": order.create_time,
            "gmv": order_gmv,
            "itemCount": len(order.line_items),
            "buyerUserId": order.buyer,
            "isIncluded": included,
        })

    return {
        "gmvMode": mode.value,
        "gmv": total_gmv,
        "orderCount": counted,
        "totalOrderCount": len(orders),
        "uniqueCustomers": len(buyers),
        "orders": details,
    }


async def fetch_shop_gmv(
    creds: ShopCredentials,
    app_key: str,
    app_secret: str,
    start: Optional[date],
    end: Optional[date],
    mode: GmvMode,
    deadline: Optional[float] = None,
    client: Optional[TikTokShopClient] = None,
    settings: Optional[Settings] = None,
) -> dict:
    """
    Fetch every order in the shop-local date window and aggregate it.
    An upstream failure mid-way still aggregates what was fetched and sets
    ``error`` / ``partial``.
    """
    settings = settings or get_settings()
    window_start, window_end = shop_day_window(start, end, settings.shop_utc_offset_hours)
    start_ts = int(window_start.timestamp())
    end_ts = int(window_end.timestamp())
    logger.info(f"Order window for shop {creds.shop_number}: {window_start.isoformat()} → "
                f"{window_end.isoformat()} ({start_ts}–{end_ts})")

    client = client or TikTokShopClient(
        app_key=app_key,
        app_secret=app_secret,
        access_token=creds.access_token,
        shop_cipher=creds.shop_cipher,
        settings=settings,
    )
    page_result = await client.search_orders(start_ts, end_ts, deadline=deadline)
    summary = aggregate_orders(parse_orders(page_result.rows), mode)
    if mode is GmvMode.GROSS:
        # Detail rows are only useful for the NET debug view
        summary.pop("orders")

    summary.update({
        "shopName": creds.shop_name,
        "currency": settings.currency,
        "dateRange": {"start": _iso(window_start), "end": _iso(window_end)},
        "error": page_result.error,
        "partial": page_result.error is not None,
    })
    return summary


def _iso(value: datetime) -> str:
    return value.isoformat(timespec="milliseconds")
