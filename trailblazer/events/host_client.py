"""HTTP client for the browser host bridge used to backfill open tabs."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from trailblazer.errors import HostUnavailable

logger = logging.getLogger("trailblazer.events.host_client")


class HttpTabHost:
    """Query the host bridge for open tabs and the focused window."""

    def __init__(self, base_url: str, timeout: float = 5.0, transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self._transport)

    async def _get_json(self, path: str, params: dict[str, str], *, missing_ok: bool = False) -> Any:
        try:
            async with self._client() as client:
                response = await client.get(path, params=params)
                if missing_ok and response.status_code == 404:
                    return None
                response.raise_for_status()
                return response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise HostUnavailable(f"host bridge request {path} failed: {exc}") from exc

    async def query_tabs(self, window_type: str = "normal") -> list[dict[str, Any]]:
        tabs = await self._get_json("/tabs", {"windowType": window_type})
        if not isinstance(tabs, list):
            logger.warning("Host bridge returned non-list tab payload")
            return []
        return [tab for tab in tabs if isinstance(tab, dict) and "id" in tab]

    async def get_last_focused_window(self, populate: bool = True) -> dict[str, Any] | None:
        window = await self._get_json(
            "/windows/last-focused",
            {"populate": "true" if populate else "false"},
            missing_ok=True,
        )
        if not isinstance(window, dict):
            return None
        return window
