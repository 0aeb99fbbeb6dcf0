"""Course completion rewards: XP, mastery badge and notifications."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from obelisk.config import get_settings
from obelisk.gamification.badge_service import BadgeAwarder
from obelisk.gamification.events import CourseCompleted, ProgressionEvent
from obelisk.gamification.progression_service import XPAward, award_xp
from obelisk.notifications.service import NotificationDispatcher

logger = logging.getLogger(__name__)


def mastery_badge_name(course_name: str) -> str:
    return f"{course_name} Mastery"


@dataclass
class CourseCompletionResult:
    xp_award: XPAward | None = None
    badge_granted: bool = False
    notifications_sent: int = 0
    events: list[ProgressionEvent] = field(default_factory=list)


async def record_course_completion(
    db: AsyncSession,
    redis: Any | None,
    user_id: int,
    course_id: int,
    course_name: str,
    *,
    xp_amount: int | None = None,
) -> CourseCompletionResult:
    """Reward a finished course. Safe to call again; repeats award nothing.

    The caller has already committed whatever marked the course complete.
    Each step logs and swallows its own failure.
    """
    amount = get_settings().course_completion_xp_reward if xp_amount is None else xp_amount
    badge_name = mastery_badge_name(course_name)
    result = CourseCompletionResult()

    try:
        result.xp_award = await award_xp(
            db,
            user_id,
            amount,
            "course",
            source_id=str(course_id),
            description=f"Completed course: {course_name}",
            idempotency_key=f"course:{course_id}:{user_id}",
        )
    except Exception:
        logger.exception("Course XP award failed: course %s user %s", course_id, user_id)
        await db.rollback()

    try:
        grant = await BadgeAwarder(db).grant(
            user_id,
            badge_name,
            {"course_id": course_id, "course_name": course_name},
            reason=f'completing "{course_name}"',
            description=f"Completed the {course_name} course",
        )
        result.badge_granted = grant.granted
    except Exception:
        logger.exception("Mastery badge failed: course %s user %s", course_id, user_id)
        await db.rollback()

    xp_applied = result.xp_award is not None and result.xp_award.applied
    if result.badge_granted or xp_applied:
        result.events.append(CourseCompleted(
            user_id=user_id,
            course_id=course_id,
            course_name=course_name,
            badge_name=badge_name if result.badge_granted else "",
        ))
    if result.xp_award is not None:
        result.events.extend(result.xp_award.events())

    result.notifications_sent = await NotificationDispatcher(db, redis).dispatch(result.events)
    return result
