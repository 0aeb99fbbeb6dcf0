"""Workshop lookup and check-in token management."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from obelisk.attendance.errors import TokenNotFound, WorkshopNotFound
from obelisk.config import get_settings
from obelisk.db.models import Workshop

logger = logging.getLogger(__name__)


def generate_qr_token() -> str:
    """A fresh random check-in token. Tokens are never reused."""
    return str(uuid.uuid4())


def build_checkin_url(token: str, base_url: str | None = None) -> str:
    """Public URL a phone camera opens when scanning the workshop QR code."""
    base = (base_url or get_settings().frontend_base_url).rstrip("/")
    return f"{base}/checkin/{token}"


def qr_payload(workshop: Workshop) -> dict[str, object]:
    """JSON embedded in the QR image shown by the host."""
    return {
        "workshopId": workshop.id,
        "qrToken": workshop.qr_token,
        "url": build_checkin_url(workshop.qr_token) if workshop.qr_token else None,
        "expiresAt": workshop.qr_expires_at.isoformat() if workshop.qr_expires_at else None,
    }


def _token_expiry(now: datetime, ttl_hours: int | None) -> datetime | None:
    hours = get_settings().qr_token_ttl_hours if ttl_hours is None else ttl_hours
    if hours <= 0:
        return None
    return now + timedelta(hours=hours)


async def get_workshop(db: AsyncSession, workshop_id: int) -> Workshop:
    result = await db.execute(select(Workshop).where(Workshop.id == workshop_id))
    workshop = result.scalar_one_or_none()
    if workshop is None:
        raise WorkshopNotFound()
    return workshop


async def get_workshop_by_token(db: AsyncSession, token: str) -> Workshop:
    result = await db.execute(select(Workshop).where(Workshop.qr_token == token))
    workshop = result.scalar_one_or_none()
    if workshop is None:
        raise TokenNotFound()
    return workshop


async def create_workshop(
    db: AsyncSession,
    title: str,
    scheduled_at: datetime,
    host_name: str,
    *,
    description: str | None = None,
    created_by: int | None = None,
    ttl_hours: int | None = None,
) -> Workshop:
    """Create a workshop with a freshly issued check-in token."""
    now = datetime.now(timezone.utc)
    workshop = Workshop(
        title=title,
        description=description,
        scheduled_at=scheduled_at,
        host_name=host_name,
        created_by=created_by,
        qr_token=generate_qr_token(),
        qr_expires_at=_token_expiry(now, ttl_hours),
        created_at=now,
        updated_at=now,
    )
    db.add(workshop)
    await db.commit()
    logger.info("Workshop created: %s (%s)", workshop.id, title)
    return workshop


async def rotate_token(db: AsyncSession, workshop: Workshop, *, ttl_hours: int | None = None) -> Workshop:
    """Replace the workshop's token. The previous token stops working immediately."""
    now = datetime.now(timezone.utc)
    workshop.qr_token = generate_qr_token()
    workshop.qr_expires_at = _token_expiry(now, ttl_hours)
    workshop.updated_at = now
    await db.commit()
    logger.info("Check-in token rotated for workshop %s", workshop.id)
    return workshop
