"""Token budget allocation for the stages of one chat turn.

    remaining = completion_token_limit - response_token_limit - tokens(fixed system strings)

computed once for intent/audience extraction and again, after both are known,
for the main chat context (additionally minus tokens(audience) + tokens(intent)).
Planner, memory and document budgets are plain fractions of that remainder.
The weights are independent and not clamped: if they sum above 1.0 the
history stage simply gets less (or nothing).

Budgets never go negative; an exhausted budget degrades to empty context.
"""

from __future__ import annotations

import logging

from copilot_chat.chat.prompts import PromptOptions
from copilot_chat.tokens import count_tokens

logger = logging.getLogger(__name__)


class BudgetAllocator:
    """Computes remaining-token budgets from one turn's prompt options."""

    def __init__(self, options: PromptOptions):
        self._options = options

    def remaining(self, fixed_strings: list[str], *derived: str) -> int:
        """Budget left after the response reservation and the given texts."""
        used = (
            self._options.response_token_limit
            + count_tokens("\n".join(fixed_strings))
            + sum(count_tokens(text) for text in derived)
        )
        remaining = self._options.completion_token_limit - used
        if remaining < 0:
            logger.warning(
                "BUDGET: fixed prompt text overdraws the limit by %d tokens, context will be empty",
                -remaining,
            )
            return 0
        return remaining

    def intent_extraction_budget(self) -> int:
        return self.remaining([
            self._options.system_description,
            self._options.system_intent,
            self._options.system_intent_continuation,
        ])

    def audience_extraction_budget(self) -> int:
        return self.remaining([
            self._options.system_audience,
            self._options.system_audience_continuation,
        ])

    def chat_context_budget(self, audience: str, user_intent: str) -> int:
        return self.remaining(
            [
                self._options.system_description,
                self._options.system_response,
                self._options.system_chat_continuation,
            ],
            audience,
            user_intent,
        )

    def external_information_budget(self, remaining: int) -> int:
        return _weighted(remaining, self._options.external_information_context_weight)

    def memories_budget(self, remaining: int) -> int:
        return _weighted(remaining, self._options.memories_context_weight)

    def documents_budget(self, remaining: int) -> int:
        return _weighted(remaining, self._options.document_context_weight)


def _weighted(remaining: int, weight: float) -> int:
    return max(0, int(remaining * weight))
