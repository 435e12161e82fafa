"""MongoDB repositories for chat sessions and chat messages (motor async).

Collections:
    chat_sessions  — one document per chat, ``_id`` = chat id
    chat_messages  — one document per message, ``_id`` = message id,
                     indexed on (chat_id, timestamp)

Per-document writes are atomic in MongoDB; the service relies on nothing more.
"""

from __future__ import annotations

import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection, AsyncIOMotorDatabase

from copilot_chat.config import settings
from copilot_chat.models import ChatMessage, ChatSession

logger = logging.getLogger(__name__)

_SESSIONS_COLLECTION = "chat_sessions"
_MESSAGES_COLLECTION = "chat_messages"


class MongoConnection:
    """Shared motor client for both repositories."""

    def __init__(self) -> None:
        self._client: AsyncIOMotorClient | None = None
        self._db: AsyncIOMotorDatabase | None = None

    async def init(self) -> None:
        """Connect and create indexes."""
        self._client = AsyncIOMotorClient(settings.mongodb_url, tz_aware=True)
        self._db = self._client.get_database(settings.mongodb_database)
        await self._db[_MESSAGES_COLLECTION].create_index([("chat_id", 1), ("timestamp", 1)])
        logger.info("MongoDB connected (database=%s)", self._db.name)

    async def close(self) -> None:
        if self._client:
            self._client.close()
            self._client = None
            self._db = None
        logger.info("MongoDB connection closed")

    def collection(self, name: str) -> AsyncIOMotorCollection:
        if self._db is None:
            raise RuntimeError("MongoDB not initialized. Call init() first.")
        return self._db[name]


class ChatSessionRepository:
    def __init__(self, connection: MongoConnection):
        self._connection = connection

    async def find_by_id(self, chat_id: str) -> ChatSession | None:
        doc = await self._connection.collection(_SESSIONS_COLLECTION).find_one({"_id": chat_id})
        if doc is None:
            return None
        doc["id"] = doc.pop("_id")
        return ChatSession.model_validate(doc)


class ChatMessageRepository:
    def __init__(self, connection: MongoConnection):
        self._connection = connection

    @property
    def _col(self) -> AsyncIOMotorCollection:
        return self._connection.collection(_MESSAGES_COLLECTION)

    async def find_by_id(self, message_id: str) -> ChatMessage | None:
        doc = await self._col.find_one({"_id": message_id})
        return _from_document(doc) if doc else None

    async def find_by_chat_id(self, chat_id: str) -> list[ChatMessage]:
        """All messages of a chat, oldest first."""
        cursor = self._col.find({"chat_id": chat_id}).sort("timestamp", 1)
        return [_from_document(doc) async for doc in cursor]

    async def create(self, message: ChatMessage) -> None:
        await self._col.insert_one(_to_document(message))
        logger.debug("Chat message created: chat=%s id=%s", message.chat_id, message.id)

    async def upsert(self, message: ChatMessage) -> None:
        await self._col.replace_one({"_id": message.id}, _to_document(message), upsert=True)
        logger.debug("Chat message upserted: chat=%s id=%s", message.chat_id, message.id)


def _to_document(message: ChatMessage) -> dict:
    doc = message.model_dump(mode="json", by_alias=True, exclude={"id"})
    doc["_id"] = message.id
    # Keep a native date so the (chat_id, timestamp) index sorts chronologically
    doc["timestamp"] = message.timestamp
    return doc


def _from_document(doc: dict) -> ChatMessage:
    doc = dict(doc)
    doc["id"] = doc.pop("_id")
    return ChatMessage.model_validate(doc)


# Singletons
mongo_connection = MongoConnection()
chat_session_repository = ChatSessionRepository(mongo_connection)
chat_message_repository = ChatMessageRepository(mongo_connection)
