"""
Typed views of the TikTok Shop and Marketing API payloads.

Upstream responses are loosely shaped JSON (numbers as strings, optional
nesting, several spellings of the same error). Everything is validated here,
at the boundary, so services only ever see these models.
"""

import enum
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, field_validator, model_validator


class PromotionType(str, enum.Enum):
    PRODUCT_GMV_MAX = "PRODUCT_GMV_MAX"
    LIVE_GMV_MAX = "LIVE_GMV_MAX"


class GmvMode(str, enum.Enum):
    """Order GMV aggregation policies.

    NET excludes cancelled/refunded orders and adds the platform discount back
    onto each line item. GROSS (the "Ikram" figure) counts every order at its
    sale price and is what ROAS is computed against.
    """
    NET = "net"
    GROSS = "gross"


EXCLUDED_ORDER_STATUSES = frozenset({"CANCELLED", "REFUNDED"})


def _number(value: Any) -> Any:
    if value is None or (isinstance(value, str) and not value.strip()):
        return 0
    return value


# ── Envelope ──────────────────────────────────────────────────────────

class ApiEnvelope(BaseModel):
    """Every TikTok Open API response: {code, message, request_id, data}."""
    model_config = ConfigDict(extra="ignore")

    code: int
    message: str = ""
    request_id: Optional[str] = None
    data: Optional[dict[str, Any]] = None


class PageInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")

    page: int = 1
    page_size: int = 0
    total_number: int = 0
    total_page: int = 0


# ── Token refresh ─────────────────────────────────────────────────────

class TokenGrant(BaseModel):
    """A successful token refresh, whatever shape it arrived in."""
    model_config = ConfigDict(extra="ignore")

    access_token: str
    refresh_token: Optional[str] = None
    access_token_expire_in: Optional[int] = None
    refresh_token_expire_in: Optional[int] = None
    open_id: Optional[str] = None
    seller_name: Optional[str] = None
    seller_base_region: Optional[str] = None

    @field_validator("access_token")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("access_token is empty")
        return v


class RefreshOutcome(BaseModel):
    shop_number: int
    shop_name: str
    success: bool
    error: Optional[str] = None
    new_access_token: Optional[str] = None
    new_refresh_token: Optional[str] = None

    def public(self) -> dict:
        """Outcome as returned over HTTP (no tokens)."""
        out = {
            "shopNumber": self.shop_number,
            "shopName": self.shop_name,
            "success": self.success,
        }
        if self.error:
            out["error"] = self.error
        return out


# ── Marketing API ─────────────────────────────────────────────────────

class Campaign(BaseModel):
    campaign_id: str
    display_name: str
    account_name: str
    promotion_type: Optional[PromotionType] = None


class ReportRow(BaseModel):
    """One row of a GMV Max or integrated report, dimensions and metrics flattened."""
    model_config = ConfigDict(extra="ignore")

    stat_time_day: Optional[str] = None
    campaign_id: Optional[str] = None
    room_id: Optional[str] = None
    cost: float = 0.0
    net_cost: float = 0.0
    orders: int = 0
    gross_revenue: float = 0.0
    roi: float = 0.0
    spend: float = 0.0
    billed_cost: float = 0.0
    impressions: int = 0
    clicks: int = 0
    live_name: Optional[str] = None
    live_status: Optional[str] = None
    live_duration: Optional[str] = None
    launched_time: Optional[str] = None

    @field_validator(
        "cost", "net_cost", "orders", "gross_revenue", "roi",
        "spend", "billed_cost", "impressions", "clicks",
        mode="before",
    )
    @classmethod
    def _blank_is_zero(cls, v: Any) -> Any:
        return _number(v)

    @model_validator(mode="after")
    def _has_key(self) -> "ReportRow":
        if not self.campaign_id and not self.room_id:
            raise ValueError("report row has neither campaign_id nor room_id")
        return self

    @classmethod
    def from_api(cls, item: dict) -> "ReportRow":
        dims = item.get("dimensions") or {}
        metrics = item.get("metrics") or {}
        if not isinstance(dims, dict) or not isinstance(metrics, dict):
            raise ValueError("report row dimensions/metrics must be objects")
        fields = {**metrics, **dims}
        fields["launched_time"] = metrics.get("live_launched_time") or dims.get("stat_time_day")
        for key in ("campaign_id", "room_id"):
            if fields.get(key) is not None:
                fields[key] = str(fields[key])
        return cls.model_validate(fields)


# ── Shop API ──────────────────────────────────────────────────────────

class LineItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    sale_price: float = 0.0
    platform_discount: float = 0.0

    @field_validator("sale_price", "platform_discount", mode="before")
    @classmethod
    def _blank_is_zero(cls, v: Any) -> Any:
        return _number(v)


class Order(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    status: str = ""
    create_time: Optional[int] = None
    buyer_user_id: Optional[str] = None
    user_id: Optional[str] = None
    line_items: list[LineItem] = []

    @field_validator("id", "buyer_user_id", "user_id", mode="before")
    @classmethod
    def _ids_as_text(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v

    @property
    def buyer(self) -> Optional[str]:
        return self.buyer_user_id or self.user_id

    @property
    def is_excluded_from_net(self) -> bool:
        return self.status.upper() in EXCLUDED_ORDER_STATUSES

    def gmv(self, mode: GmvMode) -> float:
        if mode is GmvMode.NET:
            return sum(li.sale_price + li.platform_discount for li in self.line_items)
        return sum(li.sale_price for li in self.line_items)


# ── Results ───────────────────────────────────────────────────────────

class ManualSpend(BaseModel):
    account_name: str = ""
    advertiser_id: str
    total_spend: float = 0.0
    total_billed_cost: float = 0.0
    total_impressions: int = 0
    total_clicks: int = 0
    campaign_count: int = 0
    avg_cpm: float = 0.0
    avg_cpc: float = 0.0
    error: Optional[str] = None

    def public(self) -> dict:
        return {
            "accountName": self.account_name,
            "advertiserId": self.advertiser_id,
            "totalSpend": self.total_spend,
            "totalBilledCost": self.total_billed_cost,
            "totalImpressions": self.total_impressions,
            "totalClicks": self.total_clicks,
            "campaignCount": self.campaign_count,
            "avgCPM": self.avg_cpm,
            "avgCPC": self.avg_cpc,
            "error": self.error,
            "partial": self.error is not None,
        }


class ROASResult(BaseModel):
    gmv: float
    gmv_mode: GmvMode
    live_gmv_max_cost: float
    product_gmv_max_cost: float
    gmv_max_cost: float
    manual_campaign_spend: float
    total_ads_spend: float
    sst: float
    wht: float
    total_cost_with_taxes: float
    roas: float
    actual_roas: float

    def public(self) -> dict:
        return {
            "gmv": self.gmv,
            "gmvMode": self.gmv_mode.value,
            "liveGMVMaxCost": self.live_gmv_max_cost,
            "productGMVMaxCost": self.product_gmv_max_cost,
            "gmvMaxCost": self.gmv_max_cost,
            "gmvMaxCostPolicy": "max",
            "manualCampaignSpend": self.manual_campaign_spend,
            "totalAdsSpend": self.total_ads_spend,
            "sst": self.sst,
            "wht": self.wht,
            "totalCostWithTaxes": self.total_cost_with_taxes,
            "roas": self.roas,
            "actualRoas": self.actual_roas,
        }
