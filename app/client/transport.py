"""
HTTP transport used by the employee client to talk to the service.

Only two calls matter to the reconciliation protocol: the session-state
query and the manual check-out.  Network failures and 5xx answers are
raised as ``TransientIO`` so callers can retry or wait for the next poll.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from app.core.exceptions import NoActiveSession, RaceLost, TransientIO

logger = logging.getLogger(__name__)


class HttpTransport:
    def __init__(
        self,
        base_url: str,
        token: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._base_url = base_url.rstrip("/")
        self._headers = {"Authorization": f"Bearer {token}"}

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(
                method, f"{self._base_url}{path}", headers=self._headers, **kwargs
            )
        except httpx.TransportError as exc:
            raise TransientIO(f"{method} {path} failed: {exc}") from exc
        if response.status_code >= 500:
            raise TransientIO(f"{method} {path} returned {response.status_code}")
        return response

    async def fetch_state(self, session_id: int | None = None) -> dict[str, Any]:
        params = {"session_id": session_id} if session_id is not None else None
        response = await self._request("GET", "/attendance/state", params=params)
        response.raise_for_status()
        return response.json()

    async def check_out(self) -> dict[str, Any]:
        response = await self._request("POST", "/attendance/check-out")
        if response.status_code == 404:
            raise NoActiveSession(response.json().get("detail", "No open session"))
        if response.status_code == 409:
            raise RaceLost(response.json().get("detail", "Session already closed"))
        response.raise_for_status()
        return response.json()
