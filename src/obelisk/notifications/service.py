"""Notification creation and delivery service.

Notifications are:
1. Persisted in the database
2. Pushed to the user via Redis pub/sub (ws:user:{id})

Delivery is a side channel: nothing here may fail the operation that
triggered it, so NotificationDispatcher never raises.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from obelisk.db.models import Notification
from obelisk.gamification.events import ProgressionEvent
from obelisk.notifications.push import publish_event, push_notification_to_user

logger = logging.getLogger(__name__)

VALID_TYPES = {
    "welcome",
    "message",
    "invitation",
    "submission",
    "assignment",
    "course",
    "achievement",
    "feedback",
    "team",
    "project",
    "badge",
    "system",
}


class NotificationDispatcher:
    """Best-effort notification delivery on the caller's session.

    Callers must have committed their own writes before dispatching; a
    failed insert rolls the session back.
    """

    def __init__(self, db: AsyncSession, redis: Any | None = None) -> None:
        self.db = db
        self.redis = redis

    async def notify(
        self,
        user_id: int,
        type_: str,
        title: str,
        message: str,
        link: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Notification | None:
        """Create a notification and push it. Returns None if it could not be stored."""
        if type_ not in VALID_TYPES:
            logger.warning("Dropping notification with invalid type %r for user %s", type_, user_id)
            return None

        notification = Notification(
            user_id=user_id,
            type=type_,
            title=title,
            message=message,
            link=link,
            notification_metadata=metadata if isinstance(metadata, dict) else {},
            read=False,
            created_at=datetime.now(timezone.utc),
        )
        try:
            self.db.add(notification)
            await self.db.commit()
        except Exception:
            logger.warning("Failed to store %s notification for user %s", type_, user_id, exc_info=True)
            await self._rollback()
            return None

        await push_notification_to_user(self.redis, notification)
        return notification

    async def dispatch(self, events: Iterable[ProgressionEvent]) -> int:
        """Notify for each event in order. Returns how many notifications were stored."""
        delivered = 0
        for event in events:
            await publish_event(self.redis, event.name, event.payload())
            try:
                kwargs = event.notification()
            except Exception:
                logger.warning("Could not render %s notification", event.name, exc_info=True)
                continue
            if await self.notify(event.user_id, **kwargs) is not None:
                delivered += 1
        return delivered

    async def _rollback(self) -> None:
        try:
            await self.db.rollback()
        except Exception:
            logger.warning("Rollback after notification failure also failed", exc_info=True)


async def get_notifications(
    db: AsyncSession,
    user_id: int,
    page: int = 1,
    per_page: int = 20,
    unread_only: bool = False,
) -> tuple[list[Notification], int]:
    """Get user's notifications (paginated, most recent first)."""
    offset = (page - 1) * per_page
    conditions = [Notification.user_id == user_id]
    if unread_only:
        conditions.append(Notification.read.is_(False))

    total_result = await db.execute(
        select(func.count()).select_from(Notification).where(*conditions)
    )
    total = total_result.scalar_one()

    result = await db.execute(
        select(Notification)
        .where(*conditions)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .offset(offset)
        .limit(per_page)
    )
    notifications = list(result.scalars().all())
    return notifications, total


async def mark_as_read(db: AsyncSession, user_id: int, notification_id: int) -> bool:
    """Mark a single notification as read. Returns True if found."""
    result = await db.execute(
        update(Notification)
        .where(Notification.id == notification_id, Notification.user_id == user_id)
        .values(read=True, read_at=datetime.now(timezone.utc))
    )
    await db.flush()
    return result.rowcount > 0


async def mark_all_as_read(db: AsyncSession, user_id: int) -> int:
    """Mark all unread notifications as read. Returns count updated."""
    result = await db.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.read.is_(False))
        .values(read=True, read_at=datetime.now(timezone.utc))
    )
    await db.flush()
    return result.rowcount


async def get_unread_count(db: AsyncSession, user_id: int) -> int:
    """Get count of unread notifications."""
    result = await db.execute(
        select(func.count())
        .select_from(Notification)
        .where(Notification.user_id == user_id, Notification.read.is_(False))
    )
    return result.scalar_one()
