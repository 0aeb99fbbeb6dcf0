"""Badge award service with duplicate prevention and attendance milestones."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError, ProgrammingError
from sqlalchemy.ext.asyncio import AsyncSession

from obelisk.db.models import AttendanceRecord, Badge, UserBadgeAward
from obelisk.gamification.events import BadgeGranted
from obelisk.gamification.progression_service import is_schema_missing

logger = logging.getLogger(__name__)

WORKSHOP_ATTENDEE = "Workshop Attendee"

# (attendance count, badge name), ascending
ATTENDANCE_MILESTONE_BADGES: list[tuple[int, str]] = [
    (5, "Workshop Enthusiast"),
    (10, "Workshop Master"),
]


@dataclass(frozen=True)
class BadgeGrant:
    """Outcome of BadgeAwarder.grant(). ``event`` is set only when granted."""

    granted: bool
    badge: Badge | None
    event: BadgeGranted | None = None


async def get_badge_by_name(db: AsyncSession, name: str) -> Badge | None:
    """Fetch a badge definition by name."""
    result = await db.execute(select(Badge).where(Badge.name == name))
    return result.scalar_one_or_none()


async def get_or_create_badge(
    db: AsyncSession,
    name: str,
    description: str = "",
    criteria: str | None = None,
    color: str | None = None,
) -> Badge:
    """Resolve a badge definition by name, creating it on first use."""
    badge = await get_badge_by_name(db, name)
    if badge is not None:
        return badge

    badge = Badge(name=name, description=description, criteria=criteria, color=color)
    db.add(badge)
    try:
        await db.commit()
    except IntegrityError:
        # Race condition: created by a concurrent grant
        await db.rollback()
        badge = await get_badge_by_name(db, name)
        if badge is None:
            raise
    return badge


async def has_badge(db: AsyncSession, user_id: int, badge_id: int) -> bool:
    """Check if user already has a specific badge."""
    result = await db.execute(
        select(UserBadgeAward.id).where(
            UserBadgeAward.user_id == user_id,
            UserBadgeAward.badge_id == badge_id,
        )
    )
    return result.scalar_one_or_none() is not None


async def get_user_badges(db: AsyncSession, user_id: int) -> list[UserBadgeAward]:
    """Badges earned by a user, most recent first. Empty when the schema is missing."""
    try:
        result = await db.execute(
            select(UserBadgeAward)
            .where(UserBadgeAward.user_id == user_id)
            .order_by(UserBadgeAward.awarded_at.desc())
        )
    except (OperationalError, ProgrammingError) as exc:
        if not is_schema_missing(exc):
            raise
        await db.rollback()
        return []
    return list(result.scalars().all())


async def list_badge_definitions(db: AsyncSession) -> list[Badge]:
    """All badge definitions in seed order. Empty when the schema is missing."""
    try:
        result = await db.execute(select(Badge).order_by(Badge.id))
    except (OperationalError, ProgrammingError) as exc:
        if not is_schema_missing(exc):
            raise
        await db.rollback()
        return []
    return list(result.scalars().all())


class BadgeAwarder:
    """Grants named badges, at most once per (user, badge)."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def grant(
        self,
        user_id: int,
        badge_name: str,
        context: dict[str, Any] | None = None,
        *,
        reason: str = "",
        description: str = "",
    ) -> BadgeGrant:
        """Grant a badge. A repeat grant returns granted=False, never raises on duplicates."""
        badge = await get_or_create_badge(self.db, badge_name, description=description)

        if await has_badge(self.db, user_id, badge.id):
            return BadgeGrant(granted=False, badge=badge)

        self.db.add(UserBadgeAward(
            user_id=user_id,
            badge_id=badge.id,
            awarded_at=datetime.now(timezone.utc),
            award_metadata=context or {},
        ))
        try:
            await self.db.commit()
        except IntegrityError:
            # Race condition: badge already awarded
            await self.db.rollback()
            await self.db.refresh(badge)
            return BadgeGrant(granted=False, badge=badge)

        logger.info("Badge granted: %s -> user %s", badge_name, user_id)
        event = BadgeGranted(
            user_id=user_id,
            badge_name=badge_name,
            reason=reason,
            context=context or {},
        )
        return BadgeGrant(granted=True, badge=badge, event=event)

    async def award_workshop_badge(self, user_id: int, workshop_id: int, workshop_title: str) -> BadgeGrant:
        """Grant the attendance badge for a workshop check-in."""
        return await self.grant(
            user_id,
            WORKSHOP_ATTENDEE,
            {"workshop_id": workshop_id, "workshop_title": workshop_title},
            reason=f'attending "{workshop_title}"',
            description="Attended a workshop",
        )

    async def count_attended(self, user_id: int) -> int:
        result = await self.db.execute(
            select(func.count())
            .select_from(AttendanceRecord)
            .where(AttendanceRecord.user_id == user_id)
        )
        return result.scalar_one()

    async def check_attendance_milestones(self, user_id: int) -> list[BadgeGrant]:
        """Grant every attendance-count badge the user now qualifies for.

        Derived from the attendance rows on each call; already-held badges
        come back with granted=False.
        """
        total = await self.count_attended(user_id)
        grants: list[BadgeGrant] = []
        for threshold, name in ATTENDANCE_MILESTONE_BADGES:
            if total < threshold:
                break
            grants.append(await self.grant(
                user_id,
                name,
                {"milestone": f"{threshold}_workshops"},
                reason=f"attending {threshold}+ workshops",
                description=f"Attended {threshold} workshops",
            ))
        return grants
