"""Typed check-in failures.

Each error carries a stable ``code`` (used on the wire and by the client to
map responses back to exceptions), an HTTP status and whether the caller may
retry the same request.
"""

from __future__ import annotations


class CheckInError(Exception):
    """Base class for check-in failures."""

    code = "checkin_error"
    status_code = 400
    retryable = True
    default_message = "Check-in failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict[str, object]:
        return {"detail": self.message, "code": self.code, "retryable": self.retryable}


class TokenNotFound(CheckInError):
    code = "token_not_found"
    status_code = 404
    default_message = "Invalid QR code"


class TokenMismatch(CheckInError):
    code = "token_mismatch"
    status_code = 400
    default_message = "Invalid QR code for this workshop"


class TokenExpired(CheckInError):
    code = "token_expired"
    status_code = 410
    default_message = "QR code has expired"


class CheckInWindowClosed(CheckInError):
    code = "window_closed"
    status_code = 400
    default_message = "Check-in is only available on the day of the workshop"


class RoleForbidden(CheckInError):
    code = "role_forbidden"
    status_code = 403
    retryable = False
    default_message = "Admins cannot check in using QR code. Please use the admin panel for manual check-in."


class WorkshopNotFound(CheckInError):
    code = "workshop_not_found"
    status_code = 404
    default_message = "Workshop not found"


class UserNotFound(CheckInError):
    code = "user_not_found"
    status_code = 404
    default_message = "User not found"


class StoreUnavailable(CheckInError):
    code = "store_unavailable"
    status_code = 503
    default_message = "Check-in could not be saved. Please try again."


class CaptureUnavailable(CheckInError):
    """Raised client side when the camera cannot be opened."""

    code = "capture_unavailable"
    status_code = 0
    default_message = "Unable to access camera. Please enter the code manually."


_BY_CODE: dict[str, type[CheckInError]] = {
    cls.code: cls
    for cls in (
        TokenNotFound,
        TokenMismatch,
        TokenExpired,
        CheckInWindowClosed,
        RoleForbidden,
        WorkshopNotFound,
        UserNotFound,
        StoreUnavailable,
        CaptureUnavailable,
    )
}


def error_from_code(code: str | None, message: str | None = None) -> CheckInError:
    """Rebuild a typed error from its wire code (unknown codes give the base class)."""
    cls = _BY_CODE.get(code or "", CheckInError)
    return cls(message)
