"""Workshop attendance ledger — at most one row per (workshop, user)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from obelisk.attendance.errors import StoreUnavailable, UserNotFound
from obelisk.auth.service import get_user_by_email, get_user_by_id
from obelisk.db.models import AttendanceRecord, User

logger = logging.getLogger(__name__)

METHODS = frozenset({"qr", "manual"})


@dataclass(frozen=True)
class LedgerResult:
    """``created`` is False when the user had already checked in."""

    created: bool
    record: AttendanceRecord


class AttendanceLedger:
    """Records attendance; the unique (workshop_id, user_id) index is the idempotency boundary."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get(self, workshop_id: int, user_id: int) -> AttendanceRecord | None:
        result = await self.db.execute(
            select(AttendanceRecord).where(
                AttendanceRecord.workshop_id == workshop_id,
                AttendanceRecord.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    async def record(
        self,
        workshop_id: int,
        user_id: int,
        method: str = "qr",
        recorded_by: int | None = None,
    ) -> LedgerResult:
        """Insert an attendance row and commit.

        A repeat check-in returns the existing row with created=False. Any
        other store failure is rolled back and raised as StoreUnavailable.
        """
        if method not in METHODS:
            raise ValueError(f"Unknown check-in method: {method!r}")
        if method == "manual" and recorded_by is None:
            raise ValueError("Manual check-in requires recorded_by")

        try:
            existing = await self.get(workshop_id, user_id)
            if existing is not None:
                return LedgerResult(created=False, record=existing)

            record = AttendanceRecord(
                workshop_id=workshop_id,
                user_id=user_id,
                checked_in_at=datetime.now(timezone.utc),
                method=method,
                recorded_by=recorded_by,
            )
            self.db.add(record)
            try:
                await self.db.commit()
            except IntegrityError:
                # Concurrent check-in won the unique index
                await self.db.rollback()
                existing = await self.get(workshop_id, user_id)
                if existing is None:
                    raise
                return LedgerResult(created=False, record=existing)
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.exception("Attendance write failed for workshop %s user %s", workshop_id, user_id)
            raise StoreUnavailable() from exc

        logger.info("Attendance recorded: workshop %s user %s (%s)", workshop_id, user_id, method)
        return LedgerResult(created=True, record=record)

    async def has_attended(self, workshop_id: int, user_id: int) -> bool:
        result = await self.db.execute(
            select(AttendanceRecord.id).where(
                AttendanceRecord.workshop_id == workshop_id,
                AttendanceRecord.user_id == user_id,
            )
        )
        return result.scalar_one_or_none() is not None

    async def count_for_user(self, user_id: int) -> int:
        result = await self.db.execute(
            select(func.count())
            .select_from(AttendanceRecord)
            .where(AttendanceRecord.user_id == user_id)
        )
        return result.scalar_one()

    async def list_for_workshop(self, workshop_id: int) -> list[AttendanceRecord]:
        """Attendance rows with their users loaded, earliest check-in first."""
        result = await self.db.execute(
            select(AttendanceRecord)
            .where(AttendanceRecord.workshop_id == workshop_id)
            .order_by(AttendanceRecord.checked_in_at.asc(), AttendanceRecord.id.asc())
        )
        return list(result.scalars().unique().all())

    async def resolve_user(self, user_id: int | None = None, email: str | None = None) -> User:
        """Find the target of a manual check-in by id, falling back to email."""
        user = None
        if user_id is not None:
            user = await get_user_by_id(self.db, user_id)
        if user is None and email:
            user = await get_user_by_email(self.db, email)
        if user is None:
            raise UserNotFound()
        return user
