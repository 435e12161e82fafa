"""Intent and audience extraction — one LLM completion each.

Both render a fixed instruction template around the recent chat history
(trimmed to the budget they are given) and use the intent sampling profile,
whose ``] bot:`` stop sequence keeps the model from continuing the chat.
Token usage is recorded into the accountant the caller hands in.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable

from copilot_chat.chat.history import ChatHistoryExtractor
from copilot_chat.chat.prompts import PromptOptions, render_prompt
from copilot_chat.chat.token_usage import TokenAccountant, TokenStage
from copilot_chat.errors import ExtractionFailed

logger = logging.getLogger(__name__)


class _HistoryCompletionExtractor:
    stage: TokenStage
    result_prefix: str

    def __init__(
        self,
        llm,
        history: ChatHistoryExtractor,
        options: PromptOptions,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._llm = llm
        self._history = history
        self._options = options
        self._clock = clock

    def _template(self) -> str:
        raise NotImplementedError

    async def extract(self, chat_id: str, token_limit: int, accountant: TokenAccountant) -> str:
        chat_history = await self._history.extract(chat_id, token_limit)
        prompt = render_prompt(
            self._template(),
            {"chat_history": chat_history},
            knowledge_cutoff=self._options.knowledge_cutoff_date,
            now=self._clock(),
        )

        try:
            result = await self._llm.complete_text(prompt, self._options.intent_profile())
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("%s: completion failed for chat %s: %s", self.stage.value, chat_id, e)
            raise ExtractionFailed(self.stage.value, str(e)) from e

        accountant.record(self.stage, result.total_tokens)
        text = result.text.strip()
        logger.info("%s: chat=%s → %s", self.stage.value, chat_id, text[:120])
        return f"{self.result_prefix}{text}"


class IntentExtractor(_HistoryCompletionExtractor):
    """Rewrites the last user message into a standalone intent sentence."""

    stage = TokenStage.INTENT_EXTRACTION
    result_prefix = "User intent: "

    def _template(self) -> str:
        return self._options.system_intent_extraction


class AudienceExtractor(_HistoryCompletionExtractor):
    """Lists the chat participants who have spoken so far."""

    stage = TokenStage.AUDIENCE_EXTRACTION
    result_prefix = "List of participants: "

    def _template(self) -> str:
        return self._options.system_audience_extraction
