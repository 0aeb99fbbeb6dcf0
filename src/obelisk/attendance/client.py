"""HTTP client for the check-in endpoints, used by the check-in flow."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from obelisk.attendance.errors import CheckInError, StoreUnavailable, error_from_code

logger = logging.getLogger(__name__)


class CheckInApiClient:
    """Calls verify-token and check-in, raising typed CheckInErrors on failure."""

    def __init__(
        self,
        base_url: str,
        access_token: str,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "CheckInApiClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def verify_token(self, token: str) -> dict[str, Any]:
        """Workshop summary for a token: {valid, expired, workshop, expires_at}."""
        return await self._request("GET", "/api/v1/attendance/verify-token", params={"token": token})

    async def check_in(self, token: str | None = None, payload: str | None = None) -> dict[str, Any]:
        """Submit a check-in. A repeat check-in succeeds with created=False."""
        body: dict[str, Any] = {"token": token}
        if payload is not None:
            body["payload"] = payload
        return await self._request("POST", "/api/v1/attendance/checkin", json=body)

    async def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("Check-in request %s %s failed: %s", method, url, exc)
            raise StoreUnavailable("Network error. Please check your connection and try again.") from exc

        if response.is_success:
            try:
                return response.json()
            except ValueError as exc:
                logger.warning("Check-in response %s %s was not JSON", method, url)
                raise StoreUnavailable("Unexpected response from the server. Please try again.") from exc

        try:
            data = response.json()
        except ValueError:
            data = {}
        detail = data.get("detail") if isinstance(data, dict) else None
        code = data.get("code") if isinstance(data, dict) else None
        if not isinstance(detail, str):
            detail = None
        if code is None and response.status_code >= 500:
            raise StoreUnavailable(detail)
        if code is None:
            raise CheckInError(detail or f"Check-in failed ({response.status_code})")
        raise error_from_code(code, detail)
