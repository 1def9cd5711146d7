"""
TikTok API Clients
Thin async wrappers around the three upstream API families:
  - Shop Open API (order search, HMAC-signed requests)
  - Shop auth service (token refresh)
  - Marketing API / business-api (GMV Max campaigns and reports, integrated reports)

Every list endpoint goes through ``paginate`` which accumulates rows until the
upstream says there are no more pages, and stops early (keeping what it has)
on an API error, a malformed response, or the request deadline.
"""

import asyncio
import enum
import hashlib
import hmac
import json
import logging
import time
from typing import Any, Awaitable, Callable, Optional, Union
import httpx
from pydantic import BaseModel, ValidationError
from app.config import Settings, get_settings
from app.errors import UpstreamShapeError
from app.schemas import ApiEnvelope, PageInfo, PromotionType

logger = logging.getLogger(__name__)

GMV_MAX_REPORT_METRICS = ["cost", "orders", "gross_revenue", "roi", "cost_per_order", "net_cost"]

LIVE_ROOM_METRICS = [
    "live_name",
    "live_status",
    "live_launched_time",
    "live_duration",
    "cost",
    "net_cost",
    "orders",
    "cost_per_order",
    "gross_revenue",
    "roi",
    "live_views",
    "cost_per_live_view",
    "10_second_live_views",
    "cost_per_10_second_live_view",
    "live_follows",
]

INTEGRATED_REPORT_METRICS = ["spend", "billed_cost", "impressions", "clicks", "cpm", "cpc", "ctr"]


class PageStyle(str, enum.Enum):
    PAGE_NUMBER = "page_number"  # page / page_size, stop at page_info.total_page
    CURSOR = "cursor"  # opaque next_page_token, stop when empty


class PageResult(BaseModel):
    rows: list[dict[str, Any]] = []
    pages_fetched: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


# ── Pagination ────────────────────────────────────────────────────────

async def paginate(
    request_page: Callable[[Union[int, str]], Awaitable[dict]],
    *,
    list_key: str = "list",
    style: PageStyle = PageStyle.PAGE_NUMBER,
    page_delay: float = 0.0,
    max_pages: int = 200,
    deadline: Optional[float] = None,
    label: str = "",
) -> PageResult:
    """
    Call ``request_page`` with page 1, 2, ... (or "", token, ...) until done.

    ``deadline`` is a ``time.monotonic()`` value; once passed, no further page
    is requested. Partial results always come back with ``error`` set and
    should be treated as best-effort.
    """
    result = PageResult()
    page = 1
    cursor = ""

    while True:
        if result.pages_fetched >= max_pages:
            result.error = f"stopped after {max_pages} pages"
            break
        if deadline is not None and time.monotonic() >= deadline:
            result.error = "request deadline exceeded"
            break

        try:
            raw = await request_page(page if style is PageStyle.PAGE_NUMBER else cursor)
            envelope = ApiEnvelope.model_validate(raw)
        except httpx.HTTPError as e:
            result.error = f"HTTP error: {e}"
            break
        except (ValidationError, ValueError) as e:
            result.error = f"Malformed response: {e}"
            break
        result.pages_fetched += 1

        if envelope.code != 0:
            result.error = envelope.message or f"API error code {envelope.code}"
            break

        data = envelope.data or {}
        items = data.get(list_key) or []
        if not isinstance(items, list):
            result.error = f"Malformed response: '{list_key}' is not a list"
            break
        result.rows.extend(items)
        logger.info(f"paginate({label}) page {result.pages_fetched}: {len(items)} rows "
                    f"(total so far: {len(result.rows)})")

        if style is PageStyle.PAGE_NUMBER:
            try:
                page_info = PageInfo.model_validate(data.get("page_info") or {})
            except ValidationError as e:
                result.error = f"Malformed page_info: {e}"
                break
            if page >= (page_info.total_page or 1):
                break
            page += 1
        else:
            cursor = data.get("next_page_token") or ""
            if not cursor:
                break

        if page_delay:
            await asyncio.sleep(page_delay)

    if result.error:
        logger.warning(f"paginate({label}) aborted after {result.pages_fetched} page(s): {result.error}")
    return result


# ── Signing ───────────────────────────────────────────────────────────

def sign_shop_request(path: str, params: dict[str, Any], body: str, app_secret: str) -> str:
    """
    TikTok Shop request signature.
    HMAC-SHA256(app_secret, app_secret + path + k1v1k2v2... + body + app_secret),
    keys sorted, ``sign`` and ``access_token`` left out.
    """
    keys = sorted(k for k in params if k not in ("sign", "access_token"))
    base = path + "".join(f"{k}{params[k]}" for k in keys) + (body or "")
    wrapped = f"{app_secret}{base}{app_secret}"
    return hmac.new(app_secret.encode(), wrapped.encode(), hashlib.sha256).hexdigest()


def _encode_query(params: dict[str, Any]) -> dict[str, Any]:
    """Marketing API takes list/object query values as JSON strings."""
    return {
        k: json.dumps(v) if isinstance(v, (list, dict)) else v
        for k, v in params.items()
        if v is not None
    }


class _TikTokHttp:
    def __init__(self, http: Optional[httpx.AsyncClient] = None, settings: Optional[Settings] = None):
        self._http = http
        self.settings = settings or get_settings()

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        if self._http is not None:
            return await self._http.request(method, url, **kwargs)
        async with httpx.AsyncClient(timeout=self.settings.http_timeout) as client:
            return await client.request(method, url, **kwargs)


# ── Shop Open API ─────────────────────────────────────────────────────

class TikTokShopClient(_TikTokHttp):
    """Shop Open API client for a single shop (one access token + shop cipher)."""

    def __init__(
        self,
        app_key: str,
        app_secret: str,
        access_token: str,
        shop_cipher: str,
        http: Optional[httpx.AsyncClient] = None,
        settings: Optional[Settings] = None,
    ):
        super().__init__(http, settings)
        self.app_key = app_key
        self.app_secret = app_secret
        self.access_token = access_token
        self.shop_cipher = shop_cipher

    async def search_orders(self, start_ts: int, end_ts: int, deadline: Optional[float] = None) -> PageResult:
        """All orders created in [start_ts, end_ts) (Unix seconds)."""
        path = f"/order/{self.settings.tiktok_order_api_version}/orders/search"
        url = self.settings.tiktok_shop_api_base_url.rstrip("/") + path
        body = json.dumps({"create_time_ge": start_ts, "create_time_lt": end_ts}, separators=(",", ":"))

        async def request_page(page_token: str) -> dict:
            params: dict[str, Any] = {
                "app_key": self.app_key,
                "shop_cipher": self.shop_cipher,
                "page_size": self.settings.order_page_size,
                "timestamp": int(time.time()),
            }
            if page_token:
                params["page_token"] = page_token
            params["sign"] = sign_shop_request(path, params, body, self.app_secret)
            resp = await self._send(
                "POST", url,
                params=params,
                content=body,
                headers={"x-tts-access-token": self.access_token, "Content-Type": "application/json"},
            )
            resp.raise_for_status()
            return resp.json()

        return await paginate(
            request_page,
            list_key="orders",
            style=PageStyle.CURSOR,
            max_pages=self.settings.max_pages,
            deadline=deadline,
            label="orders/search",
        )


# ── Shop auth ─────────────────────────────────────────────────────────

class TikTokAuthClient(_TikTokHttp):

    async def refresh_token(self, app_key: str, app_secret: str, refresh_token: str) -> dict:
        """
        Exchange a refresh token. Returns the raw JSON payload; interpreting it
        is left to the token service because its shape varies.
        """
        url = self.settings.tiktok_auth_base_url.rstrip("/") + "/api/v2/token/refresh"
        resp = await self._send(
            "GET", url,
            params={
                "app_key": app_key,
                "app_secret": app_secret,
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            },
        )
        try:
            payload = resp.json()
        except ValueError:
            raise UpstreamShapeError(f"Token endpoint returned HTTP {resp.status_code} with a non-JSON body")
        if not isinstance(payload, dict):
            raise UpstreamShapeError("Token endpoint returned a non-object JSON body")
        if resp.is_error and not any(payload.get(k) for k in ("error", "error_code", "error_description")):
            payload = {**payload, "error": f"HTTP {resp.status_code}: {payload.get('message') or resp.reason_phrase}"}
        return payload


# ── Marketing API ─────────────────────────────────────────────────────

class TikTokBusinessClient(_TikTokHttp):
    """Marketing API client for one advertiser access token."""

    def __init__(
        self,
        access_token: str,
        http: Optional[httpx.AsyncClient] = None,
        settings: Optional[Settings] = None,
    ):
        super().__init__(http, settings)
        self.access_token = access_token

    async def _get_pages(
        self,
        endpoint: str,
        params: dict[str, Any],
        page_size: int,
        page_delay: float = 0.0,
        deadline: Optional[float] = None,
    ) -> PageResult:
        url = f"{self.settings.business_api_root}/{endpoint}/"
        base_query = _encode_query(params)

        async def request_page(page: int) -> dict:
            query = {**base_query, "page": page, "page_size": page_size}
            resp = await self._send(
                "GET", url,
                params=query,
                headers={"Access-Token": self.access_token, "Content-Type": "application/json"},
            )
            resp.raise_for_status()
            return resp.json()

        return await paginate(
            request_page,
            list_key="list",
            style=PageStyle.PAGE_NUMBER,
            page_delay=page_delay,
            max_pages=self.settings.max_pages,
            deadline=deadline,
            label=endpoint,
        )

    async def get_gmv_max_campaigns(
        self,
        advertiser_id: str,
        promotion_type: PromotionType,
        page_delay: float = 0.0,
        deadline: Optional[float] = None,
    ) -> PageResult:
        return await self._get_pages(
            "gmv_max/campaign/get",
            {
                "advertiser_id": advertiser_id,
                "filtering": {"gmv_max_promotion_types": [promotion_type.value]},
            },
            page_size=self.settings.campaign_page_size,
            page_delay=page_delay,
            deadline=deadline,
        )

    async def get_gmv_max_report(
        self,
        advertiser_id: str,
        store_id: str,
        promotion_type: PromotionType,
        start_date: str,
        end_date: str,
        metrics: Optional[list[str]] = None,
        deadline: Optional[float] = None,
    ) -> PageResult:
        # The report endpoint does not reliably honour gmv_max_promotion_type;
        # callers must reconcile against the campaign list.
        return await self._get_pages(
            "gmv_max/report/get",
            {
                "advertiser_id": advertiser_id,
                "store_ids": [store_id],
                "gmv_max_promotion_type": promotion_type.value,
                "dimensions": ["stat_time_day", "campaign_id"],
                "metrics": metrics or GMV_MAX_REPORT_METRICS,
                "start_date": start_date,
                "end_date": end_date,
            },
            page_size=self.settings.report_page_size,
            deadline=deadline,
        )

    async def get_live_room_report(
        self,
        advertiser_id: str,
        store_id: str,
        campaign_id: str,
        start_date: str,
        end_date: str,
        deadline: Optional[float] = None,
    ) -> PageResult:
        return await self._get_pages(
            "gmv_max/report/get",
            {
                "advertiser_id": advertiser_id,
                "store_ids": [store_id],
                "gmv_max_promotion_type": PromotionType.LIVE_GMV_MAX.value,
                "dimensions": ["room_id", "stat_time_day"],
                "metrics": LIVE_ROOM_METRICS,
                "filtering": {"campaign_ids": [campaign_id]},
                "start_date": start_date,
                "end_date": end_date,
            },
            page_size=self.settings.report_page_size,
            deadline=deadline,
        )

    async def get_integrated_report(
        self,
        advertiser_id: str,
        start_date: str,
        end_date: str,
        page_delay: float = 0.0,
        deadline: Optional[float] = None,
    ) -> PageResult:
        return await self._get_pages(
            "report/integrated/get",
            {
                "advertiser_id": advertiser_id,
                "report_type": "BASIC",
                "data_level": "AUCTION_CAMPAIGN",
                "dimensions": ["stat_time_day", "campaign_id"],
                "metrics": INTEGRATED_REPORT_METRICS,
                "start_date": start_date,
                "end_date": end_date,
            },
            page_size=self.settings.report_page_size,
            page_delay=page_delay,
            deadline=deadline,
        )
