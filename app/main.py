"""
Gatherly — FastAPI application entry-point.

Run with:
    uvicorn app.main:app --reload
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from app.config import settings
from app.database import Base, async_session, engine
from app.errors import AppError, app_error_handler
from app.services.events import close_expired_events
from app.services.notifications import Mailer

# ── Import routers ──
from app.routers import auth, events, users

from app import models  # noqa: F401  (registers tables on Base.metadata)

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


async def auto_close_loop(interval: float) -> None:
    """Periodically close open events whose closing time has passed."""
    while True:
        try:
            async with async_session() as db:
                await close_expired_events(db)
        except Exception as e:
            logger.error(f"Auto-close sweep failed: {e}")
        await asyncio.sleep(interval)


# ── Lifespan: create tables, start mailer and auto-close sweep ──
@asynccontextmanager
async def lifespan(app: FastAPI):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    app.state.mailer = Mailer()
    sweeper = asyncio.create_task(auto_close_loop(settings.AUTO_CLOSE_INTERVAL_SECONDS))
    logger.info(f"{settings.APP_NAME} started ({settings.ENVIRONMENT})")
    try:
        yield
    finally:
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass
        await app.state.mailer.close()


app = FastAPI(
    title=settings.APP_NAME,
    description="Group event planning — vote on dates, places and custom options, then lock in the plan.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=("*",))
app.add_exception_handler(AppError, app_error_handler)

# ── Register API routers ──
app.include_router(auth.router)
app.include_router(users.router)
app.include_router(events.router)


@app.get("/health")
async def health():
    return {"status": "ok", "app": settings.APP_NAME}
