"""Delivery of URL Metrics from the client to the store endpoint.

Two delivery modes:
    - send_beacon: fire-and-forget. The request runs in a background task and
      its outcome is never reported to the caller, like navigator.sendBeacon.
    - post: ordinary request/response, used only by priming page views whose
      outcome is reported to the parent frame.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlencode, urlsplit, urlunsplit

import httpx

from detective.core.logging import get_logger, sanitize_error

logger = get_logger(__name__)

TRANSPORT_TIMEOUT = 10.0


def build_submission_url(endpoint: str, slug: str, hmac: str, *, prime: bool = False) -> str:
    """Add the slug, HMAC and priming marker to the store endpoint URL."""
    parts = urlsplit(endpoint)
    params: dict[str, str] = {"slug": slug}
    if prime:
        params["od_prime"] = "1"
    params["hmac"] = hmac
    query = "&".join(filter(None, [parts.query, urlencode(params)]))
    return urlunsplit(parts._replace(query=query))


class Transport:
    """httpx-backed delivery of URL Metric payloads.

    Usage:
        transport = Transport(headers={"Origin": "https://example.com"})
        transport.send_beacon(url, payload)
        ...
        await transport.aclose()
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(TRANSPORT_TIMEOUT))
        self._owns_client = client is None
        self._headers = dict(headers or {})
        self._pending: set[asyncio.Task[None]] = set()

    def send_beacon(
        self,
        url: str,
        payload: Mapping[str, Any],
        headers: Mapping[str, str] | None = None,
    ) -> bool:
        """Queue a payload for best-effort delivery.

        Returns:
            True once the request is queued; delivery itself is not observable
        """
        task = asyncio.create_task(self._deliver_beacon(url, payload, headers))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return True

    async def _deliver_beacon(
        self,
        url: str,
        payload: Mapping[str, Any],
        headers: Mapping[str, str] | None,
    ) -> None:
        try:
            await self._client.post(url, json=payload, headers=self._merge_headers(headers))
        except httpx.HTTPError as e:
            logger.debug(f"Beacon delivery failed: {sanitize_error(e)}")

    async def post(
        self,
        url: str,
        payload: Mapping[str, Any],
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        """Send a payload and wait for the response.

        Raises:
            httpx.HTTPStatusError: If the response status is not 2xx
            httpx.HTTPError: On connection or timeout failure
        """
        response = await self._client.post(url, json=payload, headers=self._merge_headers(headers))
        response.raise_for_status()
        return response

    def _merge_headers(self, headers: Mapping[str, str] | None) -> dict[str, str]:
        return {**self._headers, **(headers or {})}

    async def wait_for_pending(self) -> None:
        """Wait for queued beacons to finish."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    async def aclose(self) -> None:
        await self.wait_for_pending()
        if self._owns_client:
            await self._client.aclose()
