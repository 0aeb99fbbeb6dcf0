"""XP grant service with atomic increments, level-up and milestone detection."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, OperationalError, ProgrammingError
from sqlalchemy.ext.asyncio import AsyncSession

from obelisk.db.models import UserProgress, XPLedger
from obelisk.gamification.events import LevelUp, MilestoneReached, ProgressionEvent
from obelisk.gamification.level_thresholds import crossed_milestones, level_for

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class XPAward:
    """Outcome of award_xp(). ``applied`` is False for duplicates and no-ops."""

    user_id: int
    amount: int
    old_xp: int
    new_xp: int
    applied: bool = True
    milestones: list[int] = field(default_factory=list)

    @property
    def old_level(self) -> int:
        return level_for(self.old_xp)

    @property
    def new_level(self) -> int:
        return level_for(self.new_xp)

    @property
    def leveled_up(self) -> bool:
        return self.new_level > self.old_level

    def events(self) -> list[ProgressionEvent]:
        """Level-up and milestone events for this award, level-up first."""
        if not self.applied:
            return []
        events: list[ProgressionEvent] = []
        if self.leveled_up:
            events.append(LevelUp(
                user_id=self.user_id,
                old_level=self.old_level,
                new_level=self.new_level,
                total_xp=self.new_xp,
            ))
        events.extend(
            MilestoneReached(user_id=self.user_id, milestone=m, total_xp=self.new_xp)
            for m in self.milestones
        )
        return events


def is_schema_missing(exc: Exception) -> bool:
    """True when the error says a progression table has not been provisioned."""
    orig = getattr(exc, "orig", None)
    if type(orig).__name__ == "UndefinedTableError":
        return True
    msg = str(orig or exc).lower()
    return "no such table" in msg or ("relation" in msg and "does not exist" in msg)


async def get_or_create_progress(db: AsyncSession, user_id: int) -> UserProgress:
    """Get or create the progress row for a user."""
    result = await db.execute(
        select(UserProgress).where(UserProgress.user_id == user_id)
    )
    progress = result.scalar_one_or_none()
    if progress is not None:
        return progress

    progress = UserProgress(user_id=user_id, xp=0, updated_at=datetime.now(timezone.utc))
    db.add(progress)
    try:
        await db.commit()
    except IntegrityError:
        # Created concurrently by another award
        await db.rollback()
        result = await db.execute(
            select(UserProgress).where(UserProgress.user_id == user_id)
        )
        progress = result.scalar_one()
    return progress


async def get_xp(db: AsyncSession, user_id: int) -> int:
    """Current XP for a user (0 when no progress row exists or the schema is missing)."""
    try:
        result = await db.execute(
            select(UserProgress.xp).where(UserProgress.user_id == user_id)
        )
    except (OperationalError, ProgrammingError) as exc:
        if not is_schema_missing(exc):
            raise
        await db.rollback()
        return 0
    return result.scalar_one_or_none() or 0


async def award_xp(
    db: AsyncSession,
    user_id: int,
    amount: int,
    source: str,
    *,
    source_id: str | None = None,
    description: str | None = None,
    idempotency_key: str | None = None,
) -> XPAward:
    """Credit XP to a user.

    1. Ensure the user_progress row exists
    2. Insert into xp_ledger (duplicate idempotency_key -> no-op)
    3. Atomically increment user_progress.xp, reading back the new total
    4. Derive old/new level and crossed milestones from the totals

    Commits on success. When the progression tables are not provisioned the
    call is logged and returns a no-op award instead of raising.
    """
    if amount < 0:
        raise ValueError(f"XP amount cannot be negative: {amount}")

    try:
        await get_or_create_progress(db, user_id)

        if idempotency_key is not None:
            existing = await db.execute(
                select(XPLedger.id).where(XPLedger.idempotency_key == idempotency_key)
            )
            if existing.scalar_one_or_none() is not None:
                current = await get_xp(db, user_id)
                return XPAward(user_id=user_id, amount=amount, old_xp=current, new_xp=current, applied=False)

        now = datetime.now(timezone.utc)

        db.add(XPLedger(
            user_id=user_id,
            amount=amount,
            source=source,
            source_id=source_id,
            description=description,
            idempotency_key=idempotency_key,
            created_at=now,
        ))
        try:
            await db.flush()
        except IntegrityError:
            await db.rollback()
            current = await get_xp(db, user_id)
            logger.info("Duplicate XP grant ignored: %s", idempotency_key)
            return XPAward(user_id=user_id, amount=amount, old_xp=current, new_xp=current, applied=False)

        result = await db.execute(
            update(UserProgress)
            .where(UserProgress.user_id == user_id)
            .values(xp=UserProgress.xp + amount, updated_at=now)
            .returning(UserProgress.xp)
        )
        new_xp = result.scalar_one()
        await db.commit()
    except (OperationalError, ProgrammingError) as exc:
        if not is_schema_missing(exc):
            raise
        await db.rollback()
        logger.warning("Progression schema missing; skipping XP award for user %s", user_id)
        return XPAward(user_id=user_id, amount=amount, old_xp=0, new_xp=0, applied=False)

    old_xp = new_xp - amount
    award = XPAward(
        user_id=user_id,
        amount=amount,
        old_xp=old_xp,
        new_xp=new_xp,
        milestones=crossed_milestones(old_xp, new_xp),
    )
    if award.leveled_up:
        logger.info("User %s leveled up %d -> %d", user_id, award.old_level, award.new_level)
    return award


async def get_xp_history(
    db: AsyncSession,
    user_id: int,
    page: int = 1,
    per_page: int = 20,
) -> tuple[list[XPLedger], int]:
    """XP ledger entries for a user, most recent first, with the total count.

    Returns no entries when the progression schema is missing.
    """
    try:
        total_result = await db.execute(
            select(func.count()).select_from(XPLedger).where(XPLedger.user_id == user_id)
        )
        result = await db.execute(
            select(XPLedger)
            .where(XPLedger.user_id == user_id)
            .order_by(XPLedger.created_at.desc(), XPLedger.id.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
        )
    except (OperationalError, ProgrammingError) as exc:
        if not is_schema_missing(exc):
            raise
        await db.rollback()
        return [], 0
    return list(result.scalars().all()), total_result.scalar_one()
