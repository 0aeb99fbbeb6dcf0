"""AttendanceLedger tests — idempotent insert, failure mapping, reads."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import make_user, make_workshop
from obelisk.attendance.errors import StoreUnavailable, UserNotFound
from obelisk.attendance.ledger import AttendanceLedger
from obelisk.db.models import AttendanceRecord


async def count_rows(db: AsyncSession) -> int:
    result = await db.execute(select(func.count()).select_from(AttendanceRecord))
    return result.scalar_one()


class TestRecord:
    @pytest.mark.asyncio
    async def test_first_check_in_created(self, db_session: AsyncSession) -> None:
        user = await make_user(db_session)
        workshop = await make_workshop(db_session)

        result = await AttendanceLedger(db_session).record(workshop.id, user.id)

        assert result.created is True
        assert result.record.method == "qr"
        assert result.record.recorded_by is None
        assert await count_rows(db_session) == 1

    @pytest.mark.asyncio
    async def test_repeat_returns_existing(self, db_session: AsyncSession) -> None:
        user = await make_user(db_session)
        workshop = await make_workshop(db_session)
        ledger = AttendanceLedger(db_session)

        first = await ledger.record(workshop.id, user.id)
        second = await ledger.record(workshop.id, user.id)

        assert second.created is False
        assert second.record.id == first.record.id
        assert await count_rows(db_session) == 1

    @pytest.mark.asyncio
    async def test_unique_index_race_resolves_to_existing(self, db_session: AsyncSession, monkeypatch) -> None:
        user = await make_user(db_session)
        workshop = await make_workshop(db_session)
        user_id, workshop_id = user.id, workshop.id
        ledger = AttendanceLedger(db_session)
        first = await ledger.record(workshop_id, user_id)
        first_id = first.record.id

        real_get = ledger.get
        calls = 0

        async def get_misses_once(*args):
            nonlocal calls
            calls += 1
            if calls == 1:
                return None
            return await real_get(*args)

        monkeypatch.setattr(ledger, "get", get_misses_once)
        second = await ledger.record(workshop_id, user_id)

        assert second.created is False
        assert second.record.id == first_id
        assert await count_rows(db_session) == 1

    @pytest.mark.asyncio
    async def test_manual_requires_recorder(self, db_session: AsyncSession) -> None:
        with pytest.raises(ValueError, match="recorded_by"):
            await AttendanceLedger(db_session).record(1, 1, method="manual")

    @pytest.mark.asyncio
    async def test_unknown_method_rejected(self, db_session: AsyncSession) -> None:
        with pytest.raises(ValueError, match="method"):
            await AttendanceLedger(db_session).record(1, 1, method="nfc")

    @pytest.mark.asyncio
    async def test_store_failure_raises_store_unavailable(self, db_session: AsyncSession) -> None:
        user = await make_user(db_session)
        workshop = await make_workshop(db_session)
        user_id, workshop_id = user.id, workshop.id
        failing = AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("database is locked")))

        with patch.object(db_session, "commit", failing):
            with pytest.raises(StoreUnavailable) as exc_info:
                await AttendanceLedger(db_session).record(workshop_id, user_id)

        assert exc_info.value.retryable is True
        assert await count_rows(db_session) == 0


class TestReads:
    @pytest.mark.asyncio
    async def test_has_attended_and_count(self, db_session: AsyncSession) -> None:
        user = await make_user(db_session)
        w1 = await make_workshop(db_session, token="t1")
        w2 = await make_workshop(db_session, token="t2")
        ledger = AttendanceLedger(db_session)
        await ledger.record(w1.id, user.id)

        assert await ledger.has_attended(w1.id, user.id) is True
        assert await ledger.has_attended(w2.id, user.id) is False
        assert await ledger.count_for_user(user.id) == 1

    @pytest.mark.asyncio
    async def test_list_for_workshop_loads_users(self, db_session: AsyncSession) -> None:
        ada = await make_user(db_session)
        bob = await make_user(db_session, email="bob@example.com", first_name="Bob", last_name=None)
        admin = await make_user(db_session, email="admin@example.com", role="admin")
        workshop = await make_workshop(db_session)
        ledger = AttendanceLedger(db_session)
        await ledger.record(workshop.id, ada.id)
        await ledger.record(workshop.id, bob.id, method="manual", recorded_by=admin.id)

        rows = await ledger.list_for_workshop(workshop.id)

        assert [r.user.email for r in rows] == ["member@example.com", "bob@example.com"]
        assert rows[1].recorded_by == admin.id


class TestResolveUser:
    @pytest.mark.asyncio
    async def test_by_id(self, db_session: AsyncSession) -> None:
        user = await make_user(db_session)
        assert (await AttendanceLedger(db_session).resolve_user(user_id=user.id)).id == user.id

    @pytest.mark.asyncio
    async def test_by_email_case_insensitive(self, db_session: AsyncSession) -> None:
        user = await make_user(db_session)
        found = await AttendanceLedger(db_session).resolve_user(email="  Member@Example.COM ")
        assert found.id == user.id

    @pytest.mark.asyncio
    async def test_not_found(self, db_session: AsyncSession) -> None:
        with pytest.raises(UserNotFound):
            await AttendanceLedger(db_session).resolve_user(user_id=999, email="nobody@example.com")
