"""MessageRelayHub — outbound client-event stream for chat turns.

The pipeline only ever calls ``publish`` (or one of its shorthands), which
enqueues and returns immediately. A single drain task delivers events in
publish order to:

- local SSE subscribers of the chat (``subscribe`` / ``unsubscribe``)
- the external relay, if one is configured (RelayClient)

Nothing the pipeline does depends on delivery succeeding. Messages are
serialized at publish time, so later in-place edits (streaming) do not
rewrite events that are still queued.
"""

from __future__ import annotations

import asyncio
import logging

from copilot_chat.models import ChatMessage, ClientEvent, ClientEventKind
from copilot_chat.relay.client import RelayClient

logger = logging.getLogger(__name__)

# Bounded so a stalled relay cannot grow memory without limit
OUTBOUND_QUEUE_SIZE = 10_000
SUBSCRIBER_QUEUE_SIZE = 1_000


class MessageRelayHub:
    def __init__(self, forwarder: RelayClient | None = None):
        self._forwarder = forwarder
        self._outbound: asyncio.Queue[ClientEvent | None] = asyncio.Queue(maxsize=OUTBOUND_QUEUE_SIZE)
        self._subscribers: dict[str, set[asyncio.Queue]] = {}
        self._drain_task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._drain_task is None or self._drain_task.done():
            self._drain_task = asyncio.create_task(self._drain())
            logger.info("Relay hub started (forwarding=%s)", self._forwarder is not None)

    async def stop(self) -> None:
        """Deliver what is already queued, then stop the drain task."""
        if self._drain_task is not None and not self._drain_task.done():
            await self._outbound.put(None)
            await self._drain_task
        self._drain_task = None
        if self._forwarder is not None:
            await self._forwarder.close()
        logger.info("Relay hub stopped")

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def publish(self, event: ClientEvent) -> None:
        try:
            self._outbound.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("Relay outbound queue full, dropping %s for chat %s", event.kind.value, event.chat_id)

    def message_created(self, chat_id: str, user_id: str, message: ChatMessage) -> None:
        self.publish(ClientEvent(
            kind=ClientEventKind.MESSAGE_CREATED,
            chat_id=chat_id,
            payload={"userId": user_id, "message": message.model_dump(mode="json")},
        ))

    def message_updated(self, message: ChatMessage) -> None:
        self.publish(ClientEvent(
            kind=ClientEventKind.MESSAGE_UPDATED,
            chat_id=message.chat_id,
            payload={"message": message.model_dump(mode="json")},
        ))

    def status(self, chat_id: str, status: str) -> None:
        self.publish(ClientEvent(
            kind=ClientEventKind.STATUS,
            chat_id=chat_id,
            payload={"status": status},
        ))

    # ------------------------------------------------------------------
    # Subscribers (SSE)
    # ------------------------------------------------------------------

    def subscribe(self, chat_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)
        self._subscribers.setdefault(chat_id, set()).add(queue)
        return queue

    def unsubscribe(self, chat_id: str, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(chat_id)
        if not queues:
            return
        queues.discard(queue)
        if not queues:
            self._subscribers.pop(chat_id, None)

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def _drain(self) -> None:
        while True:
            event = await self._outbound.get()
            if event is None:
                return
            for queue in list(self._subscribers.get(event.chat_id, ())):
                try:
                    queue.put_nowait(event)
                except asyncio.QueueFull:
                    logger.warning("SSE subscriber too slow for chat %s, event dropped", event.chat_id)
            if self._forwarder is not None:
                try:
                    await self._forwarder.push(event)
                except Exception as e:
                    # The drain task must outlive any single failed delivery
                    logger.warning("Relay forward of %s for chat %s failed: %s", event.kind.value, event.chat_id, e)
