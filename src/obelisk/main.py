"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from obelisk.attendance.router import router as attendance_router
from obelisk.config import get_settings
from obelisk.database import close_db, get_session, init_db
from obelisk.gamification.router import router as progression_router
from obelisk.gamification.seed import seed_badges
from obelisk.health.router import router as health_router
from obelisk.middleware import setup_middleware
from obelisk.notifications.router import router as notifications_router
from obelisk.redis_client import close_redis, init_redis

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)

    # Seed badge definitions (idempotent)
    try:
        async for db in get_session():
            await seed_badges(db)
            break
    except Exception:
        logger.warning("Badge seeding failed (tables may not exist yet)", exc_info=True)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Obelisk API",
        description="Workshop check-in, XP progression and badges for the Obelisk learning community",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(attendance_router)
    app.include_router(progression_router)
    app.include_router(notifications_router)

    return app


app = create_app()
