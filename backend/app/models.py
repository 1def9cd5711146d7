"""
TikTok Marketing Dashboard — Database Models
One durable table: per-shop TikTok Shop OAuth credentials.
Campaigns, report rows and orders are fetched per request and never stored.
"""

from datetime import datetime, timezone
from sqlalchemy import String, Text, Integer, BigInteger, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from app.database import Base


def _utcnow() -> datetime:
    """Naive UTC now — matches DB columns (TIMESTAMP WITHOUT TIME ZONE)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ══════════════════════════════════════════════════════════════════════
#  SHOP CREDENTIALS
# ══════════════════════════════════════════════════════════════════════

class ShopCredential(Base):
    """TikTok Shop tokens for one shop, rotated by the token refresh service."""
    __tablename__ = "shop_credentials"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    shop_number: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)
    shop_name: Mapped[str] = mapped_column(String(255), nullable=False)
    shop_id: Mapped[str] = mapped_column(String(255), nullable=False)
    # Tokens are Fernet-encrypted (see app.crypto)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[str] = mapped_column(Text, nullable=False)
    shop_cipher: Mapped[str] = mapped_column(String(255), nullable=False)
    # Unix seconds
    access_token_expires_at: Mapped[int] = mapped_column(BigInteger, nullable=True)
    refresh_token_expires_at: Mapped[int] = mapped_column(BigInteger, nullable=True)
    open_id: Mapped[str] = mapped_column(String(255), nullable=True)
    seller_name: Mapped[str] = mapped_column(String(255), nullable=True)
    seller_base_region: Mapped[str] = mapped_column(String(10), nullable=True)
    last_refreshed_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)
