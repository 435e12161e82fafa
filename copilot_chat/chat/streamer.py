"""ResponseStreamer — streams the bot answer to the client and stores it.

    EMPTY ──stream()──▶ GENERATING ──stream ends──▶ COMPLETED
                            │
                            └──model error──▶ FAILED

GENERATING creates an empty bot message and pushes it, so the client has an
id to follow. Every chunk is appended to the message and pushed as an update.
COMPLETED adds the completion token count, persists and pushes once more.

FAILED still persists whatever content arrived (history is not silently
lost) and raises StreamingFailed. A cancelled turn persists nothing; the
provisional message the client already has is left to the caller.
"""

from __future__ import annotations

import logging
from enum import Enum

from copilot_chat.chat.prompts import PromptOptions
from copilot_chat.chat.token_usage import TokenAccountant
from copilot_chat.errors import StreamingFailed
from copilot_chat.models import BotResponsePrompt, ChatMessage

logger = logging.getLogger(__name__)


class StreamState(str, Enum):
    EMPTY = "empty"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


class ResponseStreamer:
    """Single-use: one instance streams one bot message."""

    def __init__(self, llm, messages, relay, options: PromptOptions):
        self._llm = llm
        self._messages = messages
        self._relay = relay
        self._options = options
        self.state = StreamState.EMPTY

    async def stream(
        self,
        chat_id: str,
        user_id: str,
        prompt: BotResponsePrompt,
        accountant: TokenAccountant,
    ) -> ChatMessage:
        if self.state is not StreamState.EMPTY:
            raise RuntimeError(f"ResponseStreamer already used (state={self.state.value})")

        message = ChatMessage.create_bot_response(chat_id, "", prompt.to_json())
        self.state = StreamState.GENERATING
        self._relay.message_created(chat_id, user_id, message)

        chunks = 0
        try:
            async for piece in self._llm.stream_chat(prompt.raw_content, self._options.response_profile()):
                message.content += piece
                chunks += 1
                self._relay.message_updated(message)
        except Exception as e:
            self.state = StreamState.FAILED
            logger.error("STREAM: failed after %d chunks for message %s: %s", chunks, message.id, e)
            await self._persist_partial(message, accountant)
            raise StreamingFailed(message.id, str(e)) from e

        self.state = StreamState.COMPLETED
        logger.info("STREAM: message %s completed (%d chunks, %d chars)", message.id, chunks, len(message.content))

        self._relay.status(chat_id, "Calculating token usage")
        message.token_usage = accountant.usage(message.content)
        self._relay.message_updated(message)

        self._relay.status(chat_id, "Saving message to chat history")
        await self._messages.upsert(message)
        return message

    async def _persist_partial(self, message: ChatMessage, accountant: TokenAccountant) -> None:
        message.token_usage = accountant.usage(message.content)
        try:
            await self._messages.upsert(message)
            logger.info("STREAM: saved partial message %s (%d chars)", message.id, len(message.content))
        except Exception as save_err:
            logger.warning("STREAM: failed to save partial message %s: %s", message.id, save_err)
