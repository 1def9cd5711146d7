"""
TikTok Marketing Dashboard — FastAPI Backend
GMV, GMV Max, manual ad spend and ROAS across TikTok Shop and Marketing API
accounts. Shop tokens are persisted to PostgreSQL and rotated on a schedule.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.config import get_settings
from app.database import async_session, init_db, check_db_connection
from app.auth import require_auth
from app.routers import credentials, cron, tiktok
from app.services.credential_store import seed_from_environment

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

settings = get_settings()


async def _bootstrap_credentials():
    """Seed shop tokens from the environment when SEED_CREDENTIALS_ON_STARTUP is set."""
    if not settings.seed_credentials_on_startup:
        return
    async with async_session() as db:
        seeded = await seed_from_environment(db)
        await db.commit()
    logger.info(f"Bootstrap: seeded credentials for shops {seeded}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting TikTok Marketing Dashboard...")
    try:
        await init_db()
        await _bootstrap_credentials()
        logger.info("Database initialized — all tables ready.")
    except Exception as e:
        logger.error(f"Startup failed (DB/init): {e}", exc_info=True)
        # Still yield so app can serve /api/health (degraded) and logs are visible
    yield
    logger.info("Shutting down...")


app = FastAPI(
    title="TikTok Marketing Dashboard",
    description="GMV, GMV Max and ROAS analytics for TikTok Shop",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Register Routers ─────────────────────────────────────────────────
_auth = [Depends(require_auth)]
app.include_router(tiktok.router, prefix="/api/tiktok", tags=["TikTok"], dependencies=_auth)
app.include_router(credentials.router, prefix="/api/credentials", tags=["Credentials"], dependencies=_auth)
app.include_router(cron.router, prefix="/api")  # Guarded by CRON_SECRET, not API_KEY


@app.get("/api/health")
async def health_check():
    db_ok = await check_db_connection()
    return {
        "status": "healthy" if db_ok else "degraded",
        "service": "TikTok Marketing Dashboard",
        "database": "connected" if db_ok else "disconnected",
    }
