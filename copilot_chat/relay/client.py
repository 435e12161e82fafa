"""REST client pushing chat events to the external client relay.

The relay fans events out to connected browsers (one group per chat).
Delivery is best-effort: a failed push is logged and reported as ``False``,
never raised into the chat pipeline.
"""

from __future__ import annotations

import logging

import httpx

from copilot_chat.config import settings
from copilot_chat.models import ClientEvent

logger = logging.getLogger(__name__)


class RelayClient:
    """HTTP client for the client relay — push-based communication."""

    def __init__(self, base_url: str | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = base_url or settings.relay_url
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=settings.relay_timeout_seconds,
                transport=self._transport,
            )
        return self._client

    async def push(self, event: ClientEvent) -> bool:
        """POST one event to the relay group of its chat."""
        try:
            client = await self._get_client()
            resp = await client.post(
                f"/internal/chats/{event.chat_id}/events",
                json=event.model_dump(mode="json"),
            )
            resp.raise_for_status()
            return True
        except httpx.HTTPError as e:
            logger.warning("Failed to push %s event to relay: %s", event.kind.value, e)
            return False

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None
