"""
Cron / Scheduled Jobs — token refresh for an external scheduler.

The scheduler calls POST /api/cron/refresh-tokens with either
  X-Cron-Secret: <CRON_SECRET>
  OR Authorization: Bearer <CRON_SECRET>

TikTok Shop access tokens are short-lived, so this should run at least daily.
"""

import hmac
import logging
from fastapi import APIRouter, Depends, Header, HTTPException

from app.config import get_settings
from app.routers.tiktok import run_token_refresh

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["Cron"])


async def _require_cron_secret(
    x_cron_secret: str | None = Header(None, alias="X-Cron-Secret"),
    authorization: str | None = Header(None),
) -> None:
    """Verify the request came from the scheduler with a valid secret."""
    secret = get_settings().cron_secret
    if not secret:
        raise HTTPException(500, "CRON_SECRET not configured")
    # Accept X-Cron-Secret header or Bearer token
    token = x_cron_secret
    if not token and authorization and authorization.startswith("Bearer "):
        token = authorization[7:]
    if not token or not hmac.compare_digest(token, secret):
        raise HTTPException(401, "Invalid cron secret")


@router.post("/refresh-tokens")
async def cron_refresh_tokens(_: None = Depends(_require_cron_secret)):
    """
    Scheduled token refresh:
    POST https://your-app/api/cron/refresh-tokens
    Header: X-Cron-Secret: <CRON_SECRET>
    """
    result = await run_token_refresh()
    logger.info(f"Cron token refresh completed: {result['summary']}")
    return {"status": "ok", **result}
