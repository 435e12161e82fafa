"""Data models for the chat response service."""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


# --- Enums ---


class AuthorRole(str, Enum):
    USER = "User"
    BOT = "Bot"
    PARTICIPANT = "Participant"


class ChatMessageType(str, Enum):
    MESSAGE = "Message"
    PLAN = "Plan"
    DOCUMENT = "Document"

    @classmethod
    def parse(cls, value: str | None) -> "ChatMessageType":
        """Unknown or missing types fall back to a standard message."""
        try:
            return cls(value)
        except ValueError:
            return cls.MESSAGE


class PlanState(str, Enum):
    NO_OP = "NoOp"            # Proposed, waiting for the user
    APPROVED = "Approved"     # User approved, planner ran it
    REJECTED = "Rejected"     # User cancelled
    DERIVED = "Derived"       # Re-derived from an approved plan


class PlanType(str, Enum):
    ACTION = "Action"
    SEQUENTIAL = "Sequential"
    STEPWISE = "Stepwise"


# --- Plans ---


class PlanStep(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = ""
    skill_name: str = Field("", alias="skillName")
    description: str = ""
    parameters: dict[str, str] = Field(default_factory=dict)


class Plan(BaseModel):
    description: str
    steps: list[PlanStep] = Field(default_factory=list)


class ProposedPlan(BaseModel):
    """Plan returned by the planner that needs user approval before it runs.

    Serialized with camelCase keys; the ``proposedPlan`` key is what marks a
    stored message body as a plan payload.
    """

    model_config = ConfigDict(populate_by_name=True)

    proposed_plan: Plan = Field(alias="proposedPlan")
    type: PlanType = PlanType.ACTION
    state: PlanState = PlanState.NO_OP
    user_intent: str = Field("", alias="userIntent")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, payload: str) -> "ProposedPlan":
        return cls.model_validate_json(payload)


# --- Storage ---


class ChatSession(BaseModel):
    id: str
    title: str = ""
    system_description: str = ""


BOT_USER_ID = "bot"
BOT_USER_NAME = "bot"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChatMessage(BaseModel):
    """A stored chat turn (user or bot).

    ``type`` is the discriminator: a ``Plan`` message always carries ``plan``
    and its content is the serialized plan.
    """

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    user_id: str
    user_name: str
    chat_id: str
    content: str = ""
    prompt: str = ""
    author_role: AuthorRole = AuthorRole.USER
    type: ChatMessageType = ChatMessageType.MESSAGE
    timestamp: datetime = Field(default_factory=_utcnow)
    token_usage: dict[str, int] | None = None
    plan: ProposedPlan | None = None

    @classmethod
    def create_bot_response(
        cls,
        chat_id: str,
        content: str,
        prompt: str,
        token_usage: dict[str, int] | None = None,
        plan: ProposedPlan | None = None,
    ) -> "ChatMessage":
        return cls(
            user_id=BOT_USER_ID,
            user_name=BOT_USER_NAME,
            chat_id=chat_id,
            content=content,
            prompt=prompt,
            author_role=AuthorRole.BOT,
            type=ChatMessageType.PLAN if plan is not None else ChatMessageType.MESSAGE,
            token_usage=token_usage,
            plan=plan,
        )

    def formatted_timestamp(self) -> str:
        return self.timestamp.strftime("%m/%d/%Y %I:%M:%S %p")

    def to_formatted_string(self) -> str:
        """One history line: ``[timestamp] name: content``."""
        return f"[{self.formatted_timestamp()}] {self.user_name}: {self.content}"


# --- Prompt trace ---


class SemanticDependency(BaseModel):
    """Result of a dependency stage plus whatever it reported about itself."""

    result: str = ""
    context: dict | None = None


class BotResponsePrompt(BaseModel):
    """Rendered prompt and the pieces it was built from (kept for tracing)."""

    raw_content: str
    system_description: str
    system_response: str
    audience: str
    user_intent: str
    chat_memories: str
    document_memories: str
    external_information: SemanticDependency
    chat_history: str
    system_chat_continuation: str

    def to_json(self) -> str:
        return self.model_dump_json()


# --- API ---


class ChatRequest(BaseModel):
    """One user turn submitted for a bot response."""

    model_config = ConfigDict(populate_by_name=True)

    message: str
    user_id: str = Field(alias="userId")
    user_name: str = Field(alias="userName")
    chat_id: str = Field("", alias="chatId")          # Filled from the URL path by the router
    message_type: str = Field(ChatMessageType.MESSAGE.value, alias="messageType")

    # Plan approval round-trip
    plan_json: str | None = Field(None, alias="proposedPlan")
    message_id: str | None = Field(None, alias="responseMessageId")
    plan_user_intent: str | None = Field(None, alias="planUserIntent")
    user_cancelled_plan: bool = Field(False, alias="userCancelledPlan")

    @property
    def has_plan_update(self) -> bool:
        return bool(self.plan_json and self.plan_json.strip()) and bool(self.message_id)


class ClientEventKind(str, Enum):
    MESSAGE_CREATED = "ReceiveMessage"
    MESSAGE_UPDATED = "ReceiveMessageUpdate"
    STATUS = "ReceiveBotResponseStatus"


class ClientEvent(BaseModel):
    """Notification pushed to the clients of one chat."""

    kind: ClientEventKind
    chat_id: str
    payload: dict = Field(default_factory=dict)
    # payload examples:
    #   kind=ReceiveMessage:           {"userId": "...", "message": {...}}
    #   kind=ReceiveMessageUpdate:     {"message": {...}}
    #   kind=ReceiveBotResponseStatus: {"status": "Extracting audience"}

    def to_sse(self) -> dict:
        return {"event": self.kind.value, "data": json.dumps(self.model_dump(mode="json"))}
