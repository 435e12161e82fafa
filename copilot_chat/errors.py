"""Turn-level failures raised by the chat response pipeline.

Every error here aborts the current turn. None of them are retried inside the
service; retry policy belongs to the callers and the external collaborators.
"""

from __future__ import annotations


class ChatTurnError(Exception):
    """Base class for failures that abort a chat turn."""


class SessionNotFound(ChatTurnError):
    """The chat id does not refer to an existing chat session."""

    def __init__(self, chat_id: str):
        super().__init__(f"Chat session does not exist: {chat_id}")
        self.chat_id = chat_id


class MessageNotFound(ChatTurnError):
    """A plan update referenced a message id that is not stored."""

    def __init__(self, message_id: str):
        super().__init__(f"Chat message does not exist: {message_id}")
        self.message_id = message_id


class ExtractionFailed(ChatTurnError):
    """Intent or audience completion call failed."""

    def __init__(self, stage: str, reason: str):
        super().__init__(f"{stage} failed: {reason}")
        self.stage = stage


class RetrievalFailed(ChatTurnError):
    """Semantic or document memory query failed."""

    def __init__(self, kind: str, reason: str):
        super().__init__(f"{kind} memory query failed: {reason}")
        self.kind = kind


class PlanAcquisitionFailed(ChatTurnError):
    """The external planning engine could not be reached or answered garbage."""


class StreamingFailed(ChatTurnError):
    """The model stream broke after the bot message was created.

    ``message_id`` identifies the partially streamed message, which has
    already been pushed to the client and persisted as far as it got.
    """

    def __init__(self, message_id: str, reason: str):
        super().__init__(f"Response streaming failed for message {message_id}: {reason}")
        self.message_id = message_id
