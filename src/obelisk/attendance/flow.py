"""Client-side check-in flow — state machine around the camera scanner.

State progression: idle -> scanning -> checking -> success | error
Transitions are validated; the scanner is released on every exit path.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, Protocol

from obelisk.attendance.errors import (
    CaptureUnavailable,
    CheckInError,
    RoleForbidden,
    StoreUnavailable,
    TokenExpired,
)

logger = logging.getLogger(__name__)

DecodeCallback = Callable[[str], Awaitable[None]]


class CheckInStatus(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    CHECKING = "checking"
    SUCCESS = "success"
    ERROR = "error"


VALID_TRANSITIONS: dict[CheckInStatus, list[CheckInStatus]] = {
    CheckInStatus.IDLE: [CheckInStatus.SCANNING, CheckInStatus.CHECKING, CheckInStatus.ERROR],
    CheckInStatus.SCANNING: [CheckInStatus.CHECKING, CheckInStatus.IDLE],
    CheckInStatus.CHECKING: [CheckInStatus.SUCCESS, CheckInStatus.ERROR],
    CheckInStatus.SUCCESS: [CheckInStatus.IDLE],
    CheckInStatus.ERROR: [CheckInStatus.IDLE],
}


def validate_transition(current: CheckInStatus, target: CheckInStatus) -> None:
    """Validate a state transition. Raises ValueError if invalid."""
    valid = VALID_TRANSITIONS.get(current, [])
    if target not in valid:
        raise ValueError(
            f"Invalid transition: {current.value} -> {target.value}. "
            f"Valid transitions: {[s.value for s in valid]}"
        )


class Scanner(Protocol):
    """Camera capture resource. ``start`` raises CaptureUnavailable when no camera can be opened."""

    async def start(self, on_decoded: DecodeCallback) -> None: ...

    async def stop(self) -> None: ...


class CheckInApi(Protocol):
    async def verify_token(self, token: str) -> dict[str, Any]: ...

    async def check_in(self, token: str | None = None, payload: str | None = None) -> dict[str, Any]: ...


class CheckInFlow:
    """Drives one check-in attempt from scan to outcome.

    ``token`` is the code from the URL the user opened, if any. ``is_admin``
    comes from the signed-in session; admins are sent to manual check-in.
    """

    def __init__(
        self,
        client: CheckInApi,
        scanner: Scanner,
        token: str | None = None,
        *,
        is_admin: bool = False,
    ) -> None:
        self.client = client
        self.scanner = scanner
        self.token = token
        self.is_admin = is_admin

        self.status = CheckInStatus.IDLE
        self.workshop_title: str | None = None
        self.result: dict[str, Any] | None = None
        self.error: str | None = None
        self.error_code: str | None = None
        self.camera_error: str | None = None
        self._retry_allowed = True
        self._scanner_active = False

    async def __aenter__(self) -> "CheckInFlow":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @property
    def can_retry(self) -> bool:
        return self.status in (CheckInStatus.SUCCESS, CheckInStatus.ERROR) and self._retry_allowed

    def _transition(self, target: CheckInStatus) -> None:
        validate_transition(self.status, target)
        self.status = target

    def _fail(self, exc: CheckInError) -> None:
        self.error = exc.message
        self.error_code = exc.code
        self._retry_allowed = exc.retryable
        self._transition(CheckInStatus.ERROR)

    async def load(self) -> None:
        """Resolve the workshop for ``token`` and start scanning if check-in is possible."""
        if self.is_admin:
            self._fail(RoleForbidden())
            return

        if self.token:
            try:
                summary = await self.client.verify_token(self.token)
            except CheckInError as exc:
                self._fail(exc)
                return
            self.workshop_title = (summary.get("workshop") or {}).get("title")
            if summary.get("expired"):
                self._fail(TokenExpired())
                return

        await self.start_scanning()

    async def start_scanning(self) -> None:
        """idle -> scanning. Without a camera the flow stays idle for manual entry."""
        self._transition(CheckInStatus.SCANNING)
        self.camera_error = None
        self._scanner_active = True
        try:
            await self.scanner.start(self._on_decoded)
        except CaptureUnavailable as exc:
            self._scanner_active = False
            self._transition(CheckInStatus.IDLE)
            self.camera_error = exc.message
            return
        except Exception:
            self._scanner_active = False
            self._transition(CheckInStatus.IDLE)
            raise

    async def _on_decoded(self, text: str) -> None:
        # Status flips before the first await so a second decode is ignored
        if self.status is not CheckInStatus.SCANNING:
            return
        self._transition(CheckInStatus.CHECKING)
        await self._release_scanner()
        await self._submit(payload=text)

    async def submit_manual(self, text: str) -> None:
        """Manual-entry fallback: submit a typed code from idle."""
        if not text or not text.strip():
            raise ValueError("Enter a check-in code")
        self._transition(CheckInStatus.CHECKING)
        await self._submit(payload=text.strip())

    async def _submit(self, token: str | None = None, payload: str | None = None) -> None:
        try:
            self.result = await self.client.check_in(token=token, payload=payload)
        except CheckInError as exc:
            self._fail(exc)
            return
        except Exception:
            logger.exception("Check-in submission failed")
            self._fail(StoreUnavailable())
            return
        self._transition(CheckInStatus.SUCCESS)

    async def cancel(self) -> None:
        """Stop scanning and return to idle. Only valid while scanning."""
        if self.status is not CheckInStatus.SCANNING:
            raise ValueError(f"Cannot cancel while {self.status.value}")
        await self._release_scanner()
        self._transition(CheckInStatus.IDLE)

    async def retry(self) -> None:
        """success/error -> idle -> scanning."""
        if self.status not in (CheckInStatus.SUCCESS, CheckInStatus.ERROR):
            raise ValueError(f"Nothing to retry while {self.status.value}")
        if not self._retry_allowed:
            raise ValueError("This check-in cannot be retried")
        self._transition(CheckInStatus.IDLE)
        self.result = None
        self.error = None
        self.error_code = None
        await self.start_scanning()

    async def close(self) -> None:
        """Release the scanner. Safe to call more than once."""
        was_scanning = self.status is CheckInStatus.SCANNING
        await self._release_scanner()
        if was_scanning:
            self._transition(CheckInStatus.IDLE)

    async def _release_scanner(self) -> None:
        if not self._scanner_active:
            return
        self._scanner_active = False
        try:
            await self.scanner.stop()
        except Exception:
            logger.warning("Error stopping scanner", exc_info=True)
