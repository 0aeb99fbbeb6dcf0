"""Check-in and workshop attendance endpoints — 9 routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from obelisk.attendance.export import attendance_csv
from obelisk.attendance.ledger import AttendanceLedger
from obelisk.attendance.schemas import (
    AttendanceEntry,
    AttendanceListResponse,
    AttendanceResponse,
    AttendeeUser,
    CheckInRequest,
    CheckInResponse,
    HasAttendedResponse,
    VerifyTokenResponse,
    WorkshopCheckInRequest,
    WorkshopCreateRequest,
    WorkshopQRResponse,
    WorkshopResponse,
    WorkshopSummary,
)
from obelisk.attendance.service import CheckInResult, CheckInService
from obelisk.attendance.token_verifier import TokenVerifier
from obelisk.attendance.workshop_service import (
    build_checkin_url,
    create_workshop,
    get_workshop,
    qr_payload,
    rotate_token,
)
from obelisk.auth.dependencies import get_current_user, require_admin
from obelisk.database import get_session
from obelisk.db.models import AttendanceRecord, User, Workshop
from obelisk.dependencies import get_redis_dep

router = APIRouter(prefix="/api/v1", tags=["Attendance"])


def _summary(workshop: Workshop) -> WorkshopSummary:
    return WorkshopSummary(id=workshop.id, title=workshop.title, scheduled_at=workshop.scheduled_at)


def _attendance(record: AttendanceRecord) -> AttendanceResponse:
    return AttendanceResponse(
        id=record.id,
        workshop_id=record.workshop_id,
        user_id=record.user_id,
        checked_in_at=record.checked_in_at,
        method=record.method,
        recorded_by=record.recorded_by,
    )


def _checkin_response(result: CheckInResult, response: Response) -> CheckInResponse:
    response.status_code = 201 if result.created else 200
    award = result.xp_award
    applied = award is not None and award.applied
    return CheckInResponse(
        created=result.created,
        attendance=_attendance(result.record),
        workshop=_summary(result.workshop),
        xp_awarded=result.xp_awarded,
        total_xp=award.new_xp if applied else None,
        level=award.new_level if applied else None,
        leveled_up=award.leveled_up if applied else False,
        milestones=list(award.milestones) if applied else [],
        badges=result.badges_granted,
    )


def _qr_response(workshop: Workshop) -> WorkshopQRResponse:
    return WorkshopQRResponse(
        workshop_id=workshop.id,
        qr_token=workshop.qr_token,
        checkin_url=build_checkin_url(workshop.qr_token) if workshop.qr_token else None,
        expires_at=workshop.qr_expires_at,
        expired=TokenVerifier().is_expired(workshop),
        payload=qr_payload(workshop),
    )


@router.get("/attendance/verify-token", response_model=VerifyTokenResponse)
async def verify_checkin_token(
    token: str = Query(..., min_length=1),
    db: AsyncSession = Depends(get_session),
):
    """Resolve a check-in token to its workshop before the user commits."""
    status = await CheckInService(db).verify_token(token)
    return VerifyTokenResponse(
        valid=status.valid,
        expired=status.expired,
        workshop=_summary(status.workshop),
        expires_at=status.expires_at,
    )


@router.post("/attendance/checkin", response_model=CheckInResponse, status_code=201)
async def checkin_with_token(
    body: CheckInRequest,
    response: Response,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    redis: object | None = Depends(get_redis_dep),
):
    """Check in by scanning (or typing) a workshop code."""
    service = CheckInService(db, redis)
    result = await service.check_in_with_token(user, body.token, body.payload)
    return _checkin_response(result, response)


@router.post("/workshops/{workshop_id}/checkin", response_model=CheckInResponse, status_code=201)
async def checkin_workshop(
    workshop_id: int,
    body: WorkshopCheckInRequest,
    response: Response,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    redis: object | None = Depends(get_redis_dep),
):
    """QR check-in to a workshop, or manual check-in by an admin."""
    service = CheckInService(db, redis)
    if body.manual:
        result = await service.manual_check_in(user, workshop_id, user_id=body.user_id, email=body.email)
    else:
        result = await service.check_in_workshop(user, workshop_id, body.qr_token)
    return _checkin_response(result, response)


@router.get("/workshops/{workshop_id}/checkin", response_model=HasAttendedResponse)
async def get_checkin_status(
    workshop_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Whether the caller has already checked in to this workshop."""
    attended = await AttendanceLedger(db).has_attended(workshop_id, user.id)
    return HasAttendedResponse(has_attended=attended)


@router.get("/workshops/{workshop_id}/attendance", response_model=AttendanceListResponse)
async def list_attendance(
    workshop_id: int,
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
):
    """Attendance list for a workshop (admin only)."""
    await get_workshop(db, workshop_id)
    records = await AttendanceLedger(db).list_for_workshop(workshop_id)
    entries = [
        AttendanceEntry(
            **_attendance(r).model_dump(),
            user=AttendeeUser(name=r.user.full_name, email=r.user.email) if r.user else None,
        )
        for r in records
    ]
    return AttendanceListResponse(attendance=entries, total=len(entries))


@router.get("/workshops/{workshop_id}/attendance.csv")
async def export_attendance(
    workshop_id: int,
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> Response:
    """Attendance list as a CSV download (admin only)."""
    await get_workshop(db, workshop_id)
    records = await AttendanceLedger(db).list_for_workshop(workshop_id)
    return Response(
        content=attendance_csv(records),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f"attachment; filename=workshop-{workshop_id}-attendance.csv"},
    )


@router.post("/workshops", response_model=WorkshopResponse, status_code=201)
async def create_new_workshop(
    body: WorkshopCreateRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
):
    """Create a workshop with a fresh check-in token (admin only)."""
    workshop = await create_workshop(
        db,
        body.title,
        body.scheduled_at,
        body.host_name,
        description=body.description,
        created_by=admin.id,
        ttl_hours=body.ttl_hours,
    )
    return WorkshopResponse.model_validate(workshop, from_attributes=True)


@router.get("/workshops/{workshop_id}/qr", response_model=WorkshopQRResponse)
async def get_workshop_qr(
    workshop_id: int,
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
):
    """Current check-in token and QR payload for the host screen (admin only)."""
    workshop = await get_workshop(db, workshop_id)
    return _qr_response(workshop)


@router.post("/workshops/{workshop_id}/qr/rotate", response_model=WorkshopQRResponse)
async def rotate_workshop_qr(
    workshop_id: int,
    ttl_hours: int | None = Query(None, ge=0),
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
):
    """Issue a new check-in token, invalidating the old one (admin only)."""
    workshop = await get_workshop(db, workshop_id)
    workshop = await rotate_token(db, workshop, ttl_hours=ttl_hours)
    return _qr_response(workshop)
