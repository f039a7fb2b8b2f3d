from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi import Depends
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.router import api_router
from app.core.errors import register_exception_handlers
from app.core.logging import configure_logging, get_logger
from app.core.settings import get_settings
from app.db.session import dispose_engine, get_db
from app.services.signaling_store import InMemorySignalingStore, SignalingStore

logger = get_logger(__name__)


async def _sweep_rooms(store: SignalingStore, interval_seconds: float) -> None:
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await store.sweep()
        except Exception:
            logger.exception("Signaling sweep failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    sweeper = asyncio.create_task(
        _sweep_rooms(app.state.signaling_store, settings.signaling_sweep_interval_seconds)
    )
    logger.info("Application started", environment=settings.environment)
    try:
        yield
    finally:
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass
        await dispose_engine()
        logger.info("Application stopped")


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)

    app = FastAPI(title="Meet API", lifespan=lifespan)
    app.state.signaling_store = InMemorySignalingStore(
        room_ttl_seconds=settings.signaling_room_ttl_seconds
    )

    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    register_exception_handlers(app)

    @app.get("/health")
    async def health():
        return {"ok": True}

    @app.get("/health/db")
    async def health_db(db: AsyncSession = Depends(get_db)):
        await db.execute(text("SELECT 1"))
        return {"ok": True}

    app.include_router(api_router, prefix=settings.api_prefix)
    return app


app = create_app()
