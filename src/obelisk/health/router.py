"""Health, readiness, and version endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy import select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from obelisk.config import get_settings
from obelisk.database import get_session
from obelisk.db.models import UserProgress
from obelisk.redis_client import get_redis_or_none

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    """Liveness probe — returns 200 if the process is alive."""
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(
    db: AsyncSession = Depends(get_session),  # noqa: B008
) -> dict[str, object]:
    """Readiness probe — checks DB and Redis connectivity.

    ``progression`` reports whether the XP tables are provisioned. It is
    informational only: check-in keeps working without them.
    """
    checks: dict[str, object] = {}

    # Database check
    try:
        result = await db.execute(text("SELECT 1"))
        result.scalar()
        checks["database"] = "ok"
    except Exception as exc:
        checks["database"] = f"error: {exc}"

    # Redis check
    redis = get_redis_or_none()
    if redis is None:
        checks["redis"] = "error: not initialized"
    else:
        try:
            await redis.ping()
            checks["redis"] = "ok"
        except Exception as exc:
            checks["redis"] = f"error: {exc}"

    all_ok = all(v == "ok" for v in checks.values())

    try:
        await db.execute(select(UserProgress.user_id).limit(1))
        progression = "ok"
    except SQLAlchemyError:
        await db.rollback()
        progression = "missing"

    return {
        "status": "ready" if all_ok else "degraded",
        "checks": checks,
        "progression": progression,
    }


@router.get("/version")
async def version() -> dict[str, str]:
    """Return API version and environment."""
    settings = get_settings()
    return {
        "version": settings.app_version,
        "environment": settings.environment,
    }
