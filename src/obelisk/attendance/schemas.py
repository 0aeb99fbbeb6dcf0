"""Pydantic request/response models for check-in and workshop endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, model_validator


# --- Requests ---


class CheckInRequest(BaseModel):
    token: str | None = None
    payload: str | None = None  # raw scanner output, preferred over token

    @model_validator(mode="after")
    def _require_code(self) -> "CheckInRequest":
        if not (self.token or self.payload):
            raise ValueError("token or payload is required")
        return self


class WorkshopCheckInRequest(BaseModel):
    qr_token: str | None = None
    manual: bool = False
    user_id: int | None = None
    email: str | None = None

    @model_validator(mode="after")
    def _check_mode(self) -> "WorkshopCheckInRequest":
        if self.manual and self.user_id is None and not self.email:
            raise ValueError("manual check-in requires user_id or email")
        if not self.manual and not self.qr_token:
            raise ValueError("qr_token is required")
        return self


class WorkshopCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str | None = None
    scheduled_at: datetime
    host_name: str = Field(min_length=1, max_length=128)
    ttl_hours: int | None = Field(default=None, ge=0)


# --- Responses ---


class WorkshopSummary(BaseModel):
    id: int
    title: str
    scheduled_at: datetime


class VerifyTokenResponse(BaseModel):
    valid: bool
    expired: bool
    workshop: WorkshopSummary
    expires_at: datetime | None = None


class AttendanceResponse(BaseModel):
    id: int
    workshop_id: int
    user_id: int
    checked_in_at: datetime
    method: str
    recorded_by: int | None = None


class CheckInResponse(BaseModel):
    created: bool
    attendance: AttendanceResponse
    workshop: WorkshopSummary
    xp_awarded: int = 0
    total_xp: int | None = None
    level: int | None = None
    leveled_up: bool = False
    milestones: list[int] = []
    badges: list[str] = []


class HasAttendedResponse(BaseModel):
    has_attended: bool


class AttendeeUser(BaseModel):
    name: str
    email: str


class AttendanceEntry(AttendanceResponse):
    user: AttendeeUser | None = None


class AttendanceListResponse(BaseModel):
    attendance: list[AttendanceEntry]
    total: int


class WorkshopQRResponse(BaseModel):
    workshop_id: int
    qr_token: str | None = None
    checkin_url: str | None = None
    expires_at: datetime | None = None
    expired: bool
    payload: dict


class WorkshopResponse(BaseModel):
    id: int
    title: str
    description: str | None = None
    scheduled_at: datetime
    host_name: str
    qr_token: str | None = None
    qr_expires_at: datetime | None = None
