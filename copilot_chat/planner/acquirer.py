"""External plan acquisition — bridge to the planning engine.

The planner gets the user intent and a token budget and answers with:
- ``planResult``: background information it already gathered (may be empty)
- ``proposedPlan``: a multi-step plan that needs user approval (optional)
- ``thoughtProcess``: its reasoning trace, kept only for the prompt trace

A proposed plan short-circuits the turn (the orchestrator stores it as the
bot answer). When the user later approves or cancels it, the client sends the
final plan back together with the id of the message that proposed it, and
that message is updated in place.
"""

from __future__ import annotations

import asyncio
import logging

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from copilot_chat.config import settings
from copilot_chat.errors import MessageNotFound, PlanAcquisitionFailed
from copilot_chat.models import ChatMessage, ChatMessageType, ProposedPlan
from copilot_chat.tokens import truncate_to_tokens

logger = logging.getLogger(__name__)


class PlanAcquisition(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    plan_result: str = Field("", alias="planResult")
    proposed_plan: ProposedPlan | None = Field(None, alias="proposedPlan")
    thought_process: dict | None = Field(None, alias="thoughtProcess")


class PlannerClient:
    """HTTP client for the planning engine."""

    def __init__(self, base_url: str | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = base_url or settings.planner_url
        self._transport = transport

    async def acquire(self, user_intent: str, chat_id: str, token_limit: int) -> PlanAcquisition:
        async with httpx.AsyncClient(
            base_url=f"{self.base_url}/api/v1",
            timeout=settings.http_timeout_seconds,
            transport=self._transport,
        ) as http:
            resp = await http.post(
                "/plans/acquire",
                json={"userIntent": user_intent, "chatId": chat_id, "tokenLimit": token_limit},
            )
            resp.raise_for_status()
            return PlanAcquisition.model_validate(resp.json())


class ExternalPlanAcquirer:
    def __init__(self, client: PlannerClient, messages):
        self._client = client
        self._messages = messages

    async def acquire(self, user_intent: str, chat_id: str, token_limit: int) -> PlanAcquisition:
        """Ask the planner; the returned plan result fits ``token_limit``."""
        try:
            acquisition = await self._client.acquire(user_intent, chat_id, max(0, token_limit))
        except asyncio.CancelledError:
            raise
        except (httpx.HTTPError, ValidationError, ValueError) as e:
            logger.error("PLAN: acquisition failed for chat %s: %s", chat_id, e)
            raise PlanAcquisitionFailed(f"Planner call failed: {e}") from e

        if acquisition.plan_result:
            clipped = truncate_to_tokens(acquisition.plan_result, token_limit)
            if clipped != acquisition.plan_result:
                logger.info("PLAN: result clipped to %d tokens for chat %s", token_limit, chat_id)
            acquisition = acquisition.model_copy(update={"plan_result": clipped})

        logger.info(
            "PLAN: chat=%s proposed=%s result_chars=%d",
            chat_id, acquisition.proposed_plan is not None, len(acquisition.plan_result),
        )
        return acquisition

    async def apply_plan_update(self, chat_id: str, message_id: str, plan_json: str) -> ChatMessage:
        """Store the approved/cancelled plan state on the message that proposed it.

        Only a plan message of the same chat can be updated; anything else is
        reported as not found. Re-submitting the same payload rewrites the same
        message; no new message is ever created here.
        """
        message = await self._messages.find_by_id(message_id)
        if message is None or message.chat_id != chat_id or message.type != ChatMessageType.PLAN:
            if message is not None:
                logger.warning("PLAN: rejected update of message %s from chat %s", message_id, chat_id)
            raise MessageNotFound(message_id)

        try:
            plan = ProposedPlan.from_json(plan_json)
        except ValidationError:
            logger.warning("PLAN: update for message %s is not a plan payload, storing as text", message_id)
            plan = None

        update: dict = {"content": plan_json}
        if plan is not None:
            if not plan.user_intent and message.plan is not None:
                plan = plan.model_copy(update={"user_intent": message.plan.user_intent})
            update["plan"] = plan
        updated = message.model_copy(update=update)

        await self._messages.upsert(updated)
        logger.info("PLAN: message %s updated (state=%s)", message_id, plan.state.value if plan else "?")
        return updated
