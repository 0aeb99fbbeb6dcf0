"""Check-in token extraction and verification.

Pure: no I/O. The caller loads the workshop and hands it in together with
whatever the scanner or the user produced.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol

from obelisk.attendance.errors import (
    CheckInWindowClosed,
    RoleForbidden,
    TokenExpired,
    TokenMismatch,
)

_CHECKIN_SEGMENT = "/checkin/"


class _Caller(Protocol):
    @property
    def is_admin(self) -> bool: ...


class _TokenHolder(Protocol):
    id: int
    qr_token: str | None
    qr_expires_at: datetime | None
    scheduled_at: datetime


@dataclass(frozen=True)
class VerifiedToken:
    workshop_id: int
    token: str


def _as_utc(value: datetime) -> datetime:
    """Treat naive timestamps as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _strip_suffix(value: str, separators: str) -> str:
    for sep in separators:
        value = value.split(sep, 1)[0]
    return value


def extract_token(scanned: str | None) -> str | None:
    """Pull the check-in token out of a scanned or typed value.

    Accepts the JSON payload embedded in the QR image, a URL or path
    containing ``/checkin/{token}``, or a bare token. Returns None when no
    token can be found.
    """
    if scanned is None:
        return None
    text = scanned.strip()
    if not text:
        return None

    if text.startswith("{"):
        try:
            data = json.loads(text)
        except ValueError:
            data = None
        if isinstance(data, dict):
            token = data.get("qrToken") or data.get("token")
            if not token:
                return None
            return str(token).strip() or None

    if _CHECKIN_SEGMENT in text:
        tail = text.split(_CHECKIN_SEGMENT, 1)[1]
        return _strip_suffix(tail, "?#/").strip() or None

    if text.lower().startswith(("http://", "https://")):
        return None

    return _strip_suffix(text, "?#").strip() or None


class TokenVerifier:
    """Validates a scanned token against a workshop, its expiry and the caller."""

    def __init__(
        self,
        now: Callable[[], datetime] | None = None,
        *,
        require_workshop_day: bool = False,
    ) -> None:
        self._now = now or (lambda: datetime.now(timezone.utc))
        self.require_workshop_day = require_workshop_day

    def now(self) -> datetime:
        return _as_utc(self._now())

    def is_expired(self, workshop: _TokenHolder) -> bool:
        if workshop.qr_expires_at is None:
            return False
        return self.now() > _as_utc(workshop.qr_expires_at)

    def verify(self, workshop: _TokenHolder, scanned: str | None, caller: _Caller) -> VerifiedToken:
        """Return the verified token or raise the first failing check.

        Order: caller role, extraction, equality, expiry, workshop day.
        """
        if caller.is_admin:
            raise RoleForbidden()

        token = extract_token(scanned)
        if token is None:
            raise TokenMismatch("No check-in code found")

        if workshop.qr_token is None or token != workshop.qr_token:
            raise TokenMismatch()

        if self.is_expired(workshop):
            raise TokenExpired()

        if self.require_workshop_day:
            if self.now().date() != _as_utc(workshop.scheduled_at).date():
                raise CheckInWindowClosed()

        return VerifiedToken(workshop_id=workshop.id, token=token)
