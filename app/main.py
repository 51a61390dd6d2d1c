"""FastAPI entrypoint for the kitchen POS order service."""

from __future__ import annotations

import logging

from fastapi import FastAPI

from app.api.v1.api import api_router
from app.core.config import settings
from app.db import session as db_session
from app.db.base import Base
from app.db.seed import ensure_demo_catalog

logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name)
app.include_router(api_router, prefix="/api/v1")


@app.on_event("startup")
async def startup() -> None:
    logging.basicConfig(level=settings.log_level.upper())
    async with db_session.engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
    if not settings.seed_demo_catalog:
        return
    async with db_session.SessionLocal() as session:
        try:
            seeded = await ensure_demo_catalog(session)
            logger.info("[BOOTSTRAP] demo catalog %s", "created" if seeded else "present")
        except Exception:
            logger.exception("[BOOTSTRAP] Seed failed; continuing startup.")


@app.on_event("shutdown")
async def shutdown() -> None:
    await db_session.change_feed.drain()


@app.get("/health", tags=["monitoring"])
async def health_check() -> dict[str, str]:
    return {"status": "healthy", "service": settings.app_name}
