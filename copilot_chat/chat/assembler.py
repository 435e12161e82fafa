"""PromptAssembler — merges all context sources into the final bot prompt.

Chat context order (fixed):
    semantic memories, document memories   (blank line between, empty ones skipped)
    chat history                           (only if budget is left after the above + plan result)
    plan result                            (last, so it takes precedence)

The system chat template is then rendered with audience, intent and the
chat context. The continuation marker is read back from the rendered text,
because its date/time only exist after rendering.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from copilot_chat.chat.history import ChatHistoryExtractor
from copilot_chat.chat.prompts import PromptOptions, extract_chat_continuation, render_prompt
from copilot_chat.models import BotResponsePrompt, SemanticDependency
from copilot_chat.planner.acquirer import PlanAcquisition
from copilot_chat.tokens import count_tokens

logger = logging.getLogger(__name__)


def build_chat_context(
    chat_memories: str,
    document_memories: str,
    chat_history: str,
    plan_result: str,
) -> str:
    parts: list[str] = []
    memory_block = "\n\n".join(c for c in (chat_memories, document_memories) if c)
    if memory_block:
        parts.append(memory_block)
    if chat_history:
        parts.append(chat_history)
    if plan_result and plan_result.strip():
        parts.append(plan_result)
    return "\n".join(parts)


class PromptAssembler:
    def __init__(
        self,
        history: ChatHistoryExtractor,
        options: PromptOptions,
        relay=None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._history = history
        self._options = options
        self._relay = relay
        self._clock = clock

    async def assemble(
        self,
        chat_id: str,
        audience: str,
        user_intent: str,
        remaining_budget: int,
        chat_memories: str,
        document_memories: str,
        plan: PlanAcquisition,
    ) -> BotResponsePrompt:
        memory_block = "\n\n".join(c for c in (chat_memories, document_memories) if c)
        history_limit = remaining_budget - count_tokens(memory_block) - count_tokens(plan.plan_result)

        chat_history = ""
        if history_limit > 0:
            if self._relay is not None:
                self._relay.status(chat_id, "Extracting chat history")
            chat_history = await self._history.extract(chat_id, history_limit)
        else:
            logger.info("CHAT_CONTEXT: no budget left for history (chat=%s, %d)", chat_id, history_limit)

        chat_context = build_chat_context(chat_memories, document_memories, chat_history, plan.plan_result)

        rendered = render_prompt(
            self._options.system_chat_prompt,
            {"audience": audience, "user_intent": user_intent, "chat_context": chat_context},
            knowledge_cutoff=self._options.knowledge_cutoff_date,
            now=self._clock(),
        )

        return BotResponsePrompt(
            raw_content=rendered,
            system_description=self._options.system_description,
            system_response=self._options.system_response,
            audience=audience,
            user_intent=user_intent,
            chat_memories=chat_memories,
            document_memories=document_memories,
            external_information=SemanticDependency(
                result=plan.plan_result,
                context=plan.thought_process,
            ),
            chat_history=chat_history,
            system_chat_continuation=extract_chat_continuation(rendered),
        )
