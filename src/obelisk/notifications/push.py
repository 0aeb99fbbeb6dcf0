"""Push formatted notifications and raw events over Redis pub/sub."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from obelisk.db.models import Notification

logger = logging.getLogger(__name__)


def format_notification(notification: "Notification") -> dict[str, Any]:
    """Client-facing shape of a notification (matches the inbox UI)."""
    return {
        "id": str(notification.id),
        "type": notification.type,
        "title": notification.title,
        "message": notification.message,
        "link": notification.link,
        "metadata": notification.notification_metadata or {},
        "read": notification.read,
        "timestamp": (
            notification.created_at.isoformat()
            if notification.created_at
            else None
        ),
    }


async def push_notification_to_user(redis: object | None, notification: "Notification") -> None:
    """Publish a formatted notification dict to ws:user:{user_id}.

    The notification must already be flushed (have an ``id``). Delivery is
    best effort: a missing client or a publish failure is logged only.
    """
    if redis is None:
        return

    ws_payload = {"event": "notification", "data": format_notification(notification)}
    try:
        await redis.publish(  # type: ignore[union-attr]
            f"ws:user:{notification.user_id}",
            json.dumps(ws_payload),
        )
    except Exception:
        logger.warning(
            "Failed to push notification via ws:user:%s",
            notification.user_id,
            exc_info=True,
        )


async def publish_event(redis: object | None, event: str, payload: dict[str, Any]) -> None:
    """Broadcast a raw progression event on pubsub:{event} for activity feeds."""
    if redis is None:
        return
    try:
        await redis.publish(f"pubsub:{event}", json.dumps(payload, default=str))  # type: ignore[union-attr]
    except Exception:
        logger.warning("Failed to publish %s broadcast", event, exc_info=True)
