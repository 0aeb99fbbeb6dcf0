"""Check-in API tests — token verification, QR and manual check-in."""

from __future__ import annotations

import json
from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import auth_headers, make_user, make_workshop
from obelisk.db.models import AttendanceRecord, User, Workshop

TOKEN = "3f6c2a4e-9d1b-4c7a-8e2f-0b5d6a7c8e91"


async def attendance_count(db: AsyncSession) -> int:
    result = await db.execute(select(func.count()).select_from(AttendanceRecord))
    return result.scalar_one()


class TestVerifyToken:
    @pytest.mark.asyncio
    async def test_valid_token(self, client: AsyncClient, workshop: Workshop) -> None:
        response = await client.get("/api/v1/attendance/verify-token", params={"token": TOKEN})

        assert response.status_code == 200
        data = response.json()
        assert data["valid"] is True
        assert data["expired"] is False
        assert data["workshop"]["id"] == workshop.id
        assert data["workshop"]["title"] == "Intro to Async Python"

    @pytest.mark.asyncio
    async def test_accepts_checkin_url(self, client: AsyncClient, workshop: Workshop) -> None:
        url = f"http://localhost:3000/checkin/{TOKEN}?utm_source=qr"
        response = await client.get("/api/v1/attendance/verify-token", params={"token": url})
        assert response.status_code == 200
        assert response.json()["workshop"]["id"] == workshop.id

    @pytest.mark.asyncio
    async def test_expired_token_still_resolves(self, client: AsyncClient, db_session: AsyncSession) -> None:
        await make_workshop(db_session, expires_in=timedelta(hours=-1))

        response = await client.get("/api/v1/attendance/verify-token", params={"token": TOKEN})

        assert response.status_code == 200
        assert response.json()["valid"] is False
        assert response.json()["expired"] is True

    @pytest.mark.asyncio
    async def test_unknown_token(self, client: AsyncClient, workshop: Workshop) -> None:
        response = await client.get("/api/v1/attendance/verify-token", params={"token": "nope"})
        assert response.status_code == 404
        assert response.json()["code"] == "token_not_found"


class TestCheckInWithToken:
    @pytest.mark.asyncio
    async def test_first_check_in(self, client: AsyncClient, member: User, workshop: Workshop) -> None:
        response = await client.post(
            "/api/v1/attendance/checkin", json={"token": TOKEN}, headers=auth_headers(member)
        )

        assert response.status_code == 201
        data = response.json()
        assert data["created"] is True
        assert data["attendance"]["user_id"] == member.id
        assert data["attendance"]["workshop_id"] == workshop.id
        assert data["attendance"]["method"] == "qr"
        assert data["workshop"]["title"] == "Intro to Async Python"
        assert data["xp_awarded"] == 100
        assert data["total_xp"] == 100
        assert data["level"] == 1
        assert data["leveled_up"] is False
        assert data["badges"] == ["Workshop Attendee"]

    @pytest.mark.asyncio
    async def test_repeat_check_in_is_idempotent(
        self, client: AsyncClient, db_session: AsyncSession, member: User, workshop: Workshop
    ) -> None:
        headers = auth_headers(member)
        first = await client.post("/api/v1/attendance/checkin", json={"token": TOKEN}, headers=headers)
        second = await client.post("/api/v1/attendance/checkin", json={"token": TOKEN}, headers=headers)

        assert first.status_code == 201
        assert second.status_code == 200
        data = second.json()
        assert data["created"] is False
        assert data["attendance"]["id"] == first.json()["attendance"]["id"]
        assert data["xp_awarded"] == 0
        assert data["badges"] == []
        assert await attendance_count(db_session) == 1

    @pytest.mark.asyncio
    async def test_scanned_json_payload(self, client: AsyncClient, member: User, workshop: Workshop) -> None:
        payload = json.dumps({"workshopId": workshop.id, "qrToken": TOKEN})
        response = await client.post(
            "/api/v1/attendance/checkin", json={"payload": payload}, headers=auth_headers(member)
        )
        assert response.status_code == 201

    @pytest.mark.asyncio
    async def test_admin_rejected(self, client: AsyncClient, db_session: AsyncSession, admin: User, workshop: Workshop) -> None:
        response = await client.post(
            "/api/v1/attendance/checkin", json={"token": TOKEN}, headers=auth_headers(admin)
        )

        assert response.status_code == 403
        data = response.json()
        assert data["code"] == "role_forbidden"
        assert data["retryable"] is False
        assert "admin panel" in data["detail"]
        assert await attendance_count(db_session) == 0

    @pytest.mark.asyncio
    async def test_expired_token(self, client: AsyncClient, db_session: AsyncSession, member: User) -> None:
        await make_workshop(db_session, expires_in=timedelta(minutes=-5))

        response = await client.post(
            "/api/v1/attendance/checkin", json={"token": TOKEN}, headers=auth_headers(member)
        )

        assert response.status_code == 410
        assert response.json()["code"] == "token_expired"
        assert await attendance_count(db_session) == 0

    @pytest.mark.asyncio
    async def test_token_without_expiry(self, client: AsyncClient, db_session: AsyncSession, member: User) -> None:
        await make_workshop(db_session, expires_in=None)
        response = await client.post(
            "/api/v1/attendance/checkin", json={"token": TOKEN}, headers=auth_headers(member)
        )
        assert response.status_code == 201

    @pytest.mark.asyncio
    async def test_unknown_token(self, client: AsyncClient, member: User, workshop: Workshop) -> None:
        response = await client.post(
            "/api/v1/attendance/checkin", json={"token": "not-a-real-token"}, headers=auth_headers(member)
        )
        assert response.status_code == 404
        assert response.json()["code"] == "token_not_found"

    @pytest.mark.asyncio
    async def test_unrelated_url(self, client: AsyncClient, member: User, workshop: Workshop) -> None:
        response = await client.post(
            "/api/v1/attendance/checkin",
            json={"payload": "https://example.com/menu"},
            headers=auth_headers(member),
        )
        assert response.status_code == 400
        assert response.json()["code"] == "token_mismatch"

    @pytest.mark.asyncio
    async def test_requires_code(self, client: AsyncClient, member: User) -> None:
        response = await client.post("/api/v1/attendance/checkin", json={}, headers=auth_headers(member))
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_requires_auth(self, client: AsyncClient, workshop: Workshop) -> None:
        response = await client.post("/api/v1/attendance/checkin", json={"token": TOKEN})
        assert response.status_code in (401, 403)

    @pytest.mark.asyncio
    async def test_banned_user(self, client: AsyncClient, db_session: AsyncSession, workshop: Workshop) -> None:
        user = await make_user(db_session, email="banned@example.com")
        user.is_banned = True
        await db_session.commit()

        response = await client.post(
            "/api/v1/attendance/checkin", json={"token": TOKEN}, headers=auth_headers(user)
        )
        assert response.status_code == 403
        assert response.json()["detail"] == "Account is banned"


class TestWorkshopCheckIn:
    @pytest.mark.asyncio
    async def test_qr_check_in(self, client: AsyncClient, member: User, workshop: Workshop) -> None:
        response = await client.post(
            f"/api/v1/workshops/{workshop.id}/checkin",
            json={"qr_token": TOKEN},
            headers=auth_headers(member),
        )
        assert response.status_code == 201
        assert response.json()["attendance"]["method"] == "qr"

    @pytest.mark.asyncio
    async def test_token_for_other_workshop(
        self, client: AsyncClient, db_session: AsyncSession, member: User, workshop: Workshop
    ) -> None:
        other = await make_workshop(db_session, title="Other", token="other-token")

        response = await client.post(
            f"/api/v1/workshops/{other.id}/checkin",
            json={"qr_token": TOKEN},
            headers=auth_headers(member),
        )

        assert response.status_code == 400
        assert response.json()["code"] == "token_mismatch"
        assert response.json()["detail"] == "Invalid QR code for this workshop"

    @pytest.mark.asyncio
    async def test_unknown_workshop(self, client: AsyncClient, member: User) -> None:
        response = await client.post(
            "/api/v1/workshops/999/checkin", json={"qr_token": TOKEN}, headers=auth_headers(member)
        )
        assert response.status_code == 404
        assert response.json()["code"] == "workshop_not_found"

    @pytest.mark.asyncio
    async def test_manual_by_email(
        self, client: AsyncClient, db_session: AsyncSession, admin: User, member: User, workshop: Workshop
    ) -> None:
        response = await client.post(
            f"/api/v1/workshops/{workshop.id}/checkin",
            json={"manual": True, "email": "MEMBER@example.com"},
            headers=auth_headers(admin),
        )

        assert response.status_code == 201
        attendance = response.json()["attendance"]
        assert attendance["user_id"] == member.id
        assert attendance["method"] == "manual"
        assert attendance["recorded_by"] == admin.id

    @pytest.mark.asyncio
    async def test_manual_ignores_expired_token(
        self, client: AsyncClient, db_session: AsyncSession, admin: User, member: User
    ) -> None:
        workshop = await make_workshop(db_session, expires_in=timedelta(hours=-2))
        response = await client.post(
            f"/api/v1/workshops/{workshop.id}/checkin",
            json={"manual": True, "user_id": member.id},
            headers=auth_headers(admin),
        )
        assert response.status_code == 201

    @pytest.mark.asyncio
    async def test_manual_unknown_user(self, client: AsyncClient, admin: User, workshop: Workshop) -> None:
        response = await client.post(
            f"/api/v1/workshops/{workshop.id}/checkin",
            json={"manual": True, "email": "ghost@example.com"},
            headers=auth_headers(admin),
        )
        assert response.status_code == 404
        assert response.json()["code"] == "user_not_found"

    @pytest.mark.asyncio
    async def test_member_cannot_record_manual(
        self, client: AsyncClient, member: User, workshop: Workshop
    ) -> None:
        response = await client.post(
            f"/api/v1/workshops/{workshop.id}/checkin",
            json={"manual": True, "user_id": member.id},
            headers=auth_headers(member),
        )
        assert response.status_code == 403
        assert response.json()["code"] == "role_forbidden"

    @pytest.mark.asyncio
    async def test_has_attended(self, client: AsyncClient, member: User, workshop: Workshop) -> None:
        headers = auth_headers(member)
        before = await client.get(f"/api/v1/workshops/{workshop.id}/checkin", headers=headers)
        await client.post(f"/api/v1/workshops/{workshop.id}/checkin", json={"qr_token": TOKEN}, headers=headers)
        after = await client.get(f"/api/v1/workshops/{workshop.id}/checkin", headers=headers)

        assert before.json() == {"has_attended": False}
        assert after.json() == {"has_attended": True}
