"""Semantic and document memory retrieval for the chat context.

The memory service owns embedding and indexing; this module only asks it for
ranked snippets and packs them into a text block under a token cap:

1. Drop items below the kind's minimum relevance
2. Sort by relevance (highest first)
3. Add lines until the next one would exceed the cap

Semantic and document queries for a turn run concurrently and are both
awaited; either failure fails the turn (RetrievalFailed).
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from copilot_chat.chat.prompts import PromptOptions
from copilot_chat.config import settings
from copilot_chat.errors import RetrievalFailed
from copilot_chat.tokens import count_tokens

logger = logging.getLogger(__name__)

# Candidate items requested per query; the token cap decides how many are kept
MAX_RESULTS = 100


class MemoryKind(str, Enum):
    SEMANTIC = "semantic"
    DOCUMENT = "document"


MEMORY_HEADERS: dict[MemoryKind, str] = {
    MemoryKind.SEMANTIC: "Past memories (format: [memory type] <label>: <details>):",
    MemoryKind.DOCUMENT: "User has also shared some document snippets:",
}


class MemoryItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: str
    relevance: float = 0.0
    label: str = ""
    memory_type: str = Field("", alias="memoryType")
    document_name: str = Field("", alias="documentName")


def _format_item(kind: MemoryKind, item: MemoryItem) -> str:
    if kind == MemoryKind.DOCUMENT:
        return f"[Document name: {item.document_name or item.label}] {item.text}"
    return f"[{item.memory_type}] {item.label}: {item.text}"


def format_memories(
    kind: MemoryKind,
    items: list[MemoryItem],
    token_limit: int,
    min_relevance: float,
) -> str:
    """Pack the most relevant items into one block; empty if nothing fits."""
    header = MEMORY_HEADERS[kind]
    remaining = token_limit - count_tokens(header)
    if remaining <= 0:
        return ""

    lines: list[str] = []
    ranked = sorted(
        (i for i in items if i.relevance >= min_relevance),
        key=lambda i: i.relevance,
        reverse=True,
    )
    for item in ranked:
        line = _format_item(kind, item)
        cost = count_tokens("\n" + line)
        if cost > remaining:
            break
        lines.append(line)
        remaining -= cost

    if not lines:
        return ""
    return "\n".join([header, *lines])


class MemoryServiceClient:
    """HTTP client for the long-term memory service."""

    def __init__(self, base_url: str | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = base_url or settings.memory_service_url
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=f"{self.base_url}/api/v1",
            timeout=settings.http_timeout_seconds,
            transport=self._transport,
        )

    async def query(
        self,
        kind: MemoryKind,
        query: str,
        chat_id: str,
        min_relevance: float,
    ) -> list[MemoryItem]:
        async with self._client() as http:
            resp = await http.post(
                "/memories/query",
                json={
                    "kind": kind.value,
                    "query": query,
                    "chatId": chat_id,
                    "minRelevance": min_relevance,
                    "maxResults": MAX_RESULTS,
                },
            )
            resp.raise_for_status()
            return [MemoryItem.model_validate(i) for i in resp.json().get("items", [])]

    async def extract_chat_memories(self, chat_id: str, user_intent: str, response: str) -> None:
        """Ask the service to distill long-term memories from a finished turn."""
        async with self._client() as http:
            resp = await http.post(
                "/memories/extract",
                json={"chatId": chat_id, "userIntent": user_intent, "response": response},
            )
            resp.raise_for_status()


class MemoryRetriever:
    def __init__(self, client: MemoryServiceClient, options: PromptOptions):
        self._client = client
        self._options = options

    def _min_relevance(self, kind: MemoryKind) -> float:
        if kind == MemoryKind.DOCUMENT:
            return self._options.document_min_relevance
        return self._options.memory_min_relevance

    async def query(self, kind: MemoryKind, user_intent: str, chat_id: str, token_limit: int) -> str:
        if token_limit <= 0:
            logger.info("MEMORY: %s budget exhausted, skipping query", kind.value)
            return ""

        min_relevance = self._min_relevance(kind)
        try:
            items = await self._client.query(kind, user_intent, chat_id, min_relevance)
        except (httpx.HTTPError, ValidationError, ValueError) as e:
            logger.error("MEMORY: %s query failed for chat %s: %s", kind.value, chat_id, e)
            raise RetrievalFailed(kind.value, str(e)) from e

        block = format_memories(kind, items, token_limit, min_relevance)
        logger.info(
            "MEMORY: %s chat=%s items=%d → %d tokens (limit %d)",
            kind.value, chat_id, len(items), count_tokens(block), token_limit,
        )
        return block

    async def retrieve(
        self,
        user_intent: str,
        chat_id: str,
        memories_token_limit: int,
        documents_token_limit: int,
    ) -> tuple[str, str]:
        """(semantic memories, document memories), always in that order.

        Both queries finish before this returns or raises; the first failure
        (semantic before document) is re-raised.
        """
        results = await asyncio.gather(
            self.query(MemoryKind.SEMANTIC, user_intent, chat_id, memories_token_limit),
            self.query(MemoryKind.DOCUMENT, user_intent, chat_id, documents_token_limit),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        chat_memories, document_memories = results
        return chat_memories, document_memories
