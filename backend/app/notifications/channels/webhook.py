"""
webhook.py — HTTP transport shared by the webhook provider of each channel.

The provider gateway receives a JSON document describing one message and
answers 2xx on acceptance. Any other status, or a transport error, is a
ChannelSendError.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from backend.app.core.errors import ChannelSendError

logger = logging.getLogger(__name__)


class WebhookTransport:
    """POSTs channel payloads to a provider gateway URL."""

    def __init__(
        self,
        channel: str,
        url: Optional[str],
        *,
        timeout_seconds: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.channel = channel
        self.url = url
        self.timeout_seconds = timeout_seconds
        self._http_client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self.url:
            raise ChannelSendError(self.channel, "no webhook URL configured")

        client = await self._get_client()
        try:
            response = await client.post(self.url, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error("[%s] Webhook rejected: %s", self.channel, e)
            raise ChannelSendError(
                self.channel, f"gateway returned {e.response.status_code}",
                status_code=e.response.status_code,
            )
        except httpx.HTTPError as e:
            logger.error("[%s] Webhook request failed: %s", self.channel, e)
            raise ChannelSendError(self.channel, str(e))

        body: Dict[str, Any] = {"mode": "webhook", "status_code": response.status_code}
        if response.content:
            try:
                body["gateway"] = response.json()
            except ValueError:
                body["gateway"] = response.text[:200]
        return body
