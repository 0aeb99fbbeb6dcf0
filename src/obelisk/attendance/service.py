"""Workshop check-in orchestration.

verify token -> record attendance (committed) -> on a new row only:
award XP, grant badges, then dispatch notifications.

The attendance write is the primary operation. Everything after it is
best effort and must not turn a recorded check-in into an error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from obelisk.attendance.errors import RoleForbidden, TokenMismatch, TokenNotFound
from obelisk.attendance.ledger import AttendanceLedger
from obelisk.attendance.token_verifier import TokenVerifier, extract_token
from obelisk.attendance.workshop_service import get_workshop, get_workshop_by_token
from obelisk.config import Settings, get_settings
from obelisk.db.models import AttendanceRecord, User, Workshop
from obelisk.gamification.badge_service import BadgeAwarder
from obelisk.gamification.events import CheckInCompleted, ProgressionEvent
from obelisk.gamification.progression_service import XPAward, award_xp
from obelisk.notifications.service import NotificationDispatcher

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenStatus:
    """Public view of a token lookup, shown before the user checks in."""

    valid: bool
    expired: bool
    workshop: Workshop
    expires_at: datetime | None


@dataclass
class CheckInResult:
    created: bool
    record: AttendanceRecord
    workshop: Workshop
    xp_award: XPAward | None = None
    badges_granted: list[str] = field(default_factory=list)
    notifications_sent: int = 0

    @property
    def xp_awarded(self) -> int:
        if self.xp_award is None or not self.xp_award.applied:
            return 0
        return self.xp_award.amount


class CheckInService:
    """Check-in entry points shared by the QR and manual flows."""

    def __init__(
        self,
        db: AsyncSession,
        redis: Any | None = None,
        *,
        settings: Settings | None = None,
        verifier: TokenVerifier | None = None,
    ) -> None:
        self.db = db
        self.redis = redis
        self.settings = settings or get_settings()
        self.verifier = verifier or TokenVerifier(
            require_workshop_day=self.settings.checkin_require_workshop_day,
        )
        self.ledger = AttendanceLedger(db)

    async def verify_token(self, token: str | None) -> TokenStatus:
        """Look up the workshop behind a token without checking in."""
        extracted = extract_token(token)
        if extracted is None:
            raise TokenNotFound()
        workshop = await get_workshop_by_token(self.db, extracted)
        expired = self.verifier.is_expired(workshop)
        return TokenStatus(
            valid=not expired,
            expired=expired,
            workshop=workshop,
            expires_at=workshop.qr_expires_at,
        )

    async def check_in_with_token(
        self,
        caller: User,
        token: str | None,
        payload: str | None = None,
    ) -> CheckInResult:
        """Check in with whatever the scanner produced; the token identifies the workshop."""
        if caller.is_admin:
            raise RoleForbidden()

        scanned = payload or token
        extracted = extract_token(scanned)
        if extracted is None:
            raise TokenMismatch("No check-in code found")

        workshop = await get_workshop_by_token(self.db, extracted)
        self.verifier.verify(workshop, extracted, caller)
        return await self._record(workshop, caller.id, "qr")

    async def check_in_workshop(self, caller: User, workshop_id: int, qr_token: str | None) -> CheckInResult:
        """Check in to a known workshop, presenting its token."""
        if caller.is_admin:
            raise RoleForbidden()

        workshop = await get_workshop(self.db, workshop_id)
        self.verifier.verify(workshop, qr_token, caller)
        return await self._record(workshop, caller.id, "qr")

    async def manual_check_in(
        self,
        admin: User,
        workshop_id: int,
        user_id: int | None = None,
        email: str | None = None,
    ) -> CheckInResult:
        """Record attendance on someone's behalf. Admin only; no token needed."""
        if not admin.is_admin:
            raise RoleForbidden("Only admins can record manual check-ins")

        admin_id = admin.id
        workshop = await get_workshop(self.db, workshop_id)
        target = await self.ledger.resolve_user(user_id=user_id, email=email)
        return await self._record(workshop, target.id, "manual", recorded_by=admin_id)

    async def has_attended(self, workshop_id: int, user_id: int) -> bool:
        return await self.ledger.has_attended(workshop_id, user_id)

    async def _record(
        self,
        workshop: Workshop,
        user_id: int,
        method: str,
        recorded_by: int | None = None,
    ) -> CheckInResult:
        workshop_id = workshop.id
        workshop_title = workshop.title

        outcome = await self.ledger.record(workshop_id, user_id, method, recorded_by)
        if not outcome.created:
            logger.info("Repeat check-in ignored: workshop %s user %s", workshop_id, user_id)
            await self.db.refresh(workshop)
            return CheckInResult(created=False, record=outcome.record, workshop=workshop)

        result = CheckInResult(created=True, record=outcome.record, workshop=workshop)
        events = await self._reward(result, user_id, workshop_id, workshop_title, method)
        result.notifications_sent = await NotificationDispatcher(self.db, self.redis).dispatch(events)

        # Secondary steps may have rolled back, which expires loaded rows
        await self.db.refresh(result.workshop)
        await self.db.refresh(result.record)
        return result

    async def _reward(
        self,
        result: CheckInResult,
        user_id: int,
        workshop_id: int,
        workshop_title: str,
        method: str,
    ) -> list[ProgressionEvent]:
        """Run the post-check-in pipeline, collecting events for the dispatcher."""
        award: XPAward | None = None
        try:
            award = await award_xp(
                self.db,
                user_id,
                self.settings.checkin_xp_reward,
                "workshop",
                source_id=str(workshop_id),
                description=f"Attended workshop: {workshop_title}",
                idempotency_key=f"workshop:{workshop_id}:{user_id}",
            )
        except Exception:
            logger.exception("XP award failed for check-in: workshop %s user %s", workshop_id, user_id)
            await self._rollback()
        result.xp_award = award

        events: list[ProgressionEvent] = [
            CheckInCompleted(
                user_id=user_id,
                workshop_id=workshop_id,
                workshop_title=workshop_title,
                method=method,
                xp_awarded=result.xp_awarded,
            )
        ]
        if award is not None:
            events.extend(award.events())

        awarder = BadgeAwarder(self.db)
        try:
            grant = await awarder.award_workshop_badge(user_id, workshop_id, workshop_title)
            if grant.granted and grant.event is not None:
                result.badges_granted.append(grant.event.badge_name)
                events.append(grant.event)
        except Exception:
            logger.exception("Attendance badge failed: workshop %s user %s", workshop_id, user_id)
            await self._rollback()

        try:
            for grant in await awarder.check_attendance_milestones(user_id):
                if grant.granted and grant.event is not None:
                    result.badges_granted.append(grant.event.badge_name)
                    events.append(grant.event)
        except Exception:
            logger.exception("Attendance milestone check failed for user %s", user_id)
            await self._rollback()

        return events

    async def _rollback(self) -> None:
        try:
            await self.db.rollback()
        except Exception:
            logger.warning("Rollback after check-in side effect failure failed", exc_info=True)
