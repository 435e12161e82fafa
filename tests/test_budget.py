"""Token budget allocation tests (word tokenizer: one token per word)."""

from __future__ import annotations

import pytest


def _options(**overrides):
    from copilot_chat.chat.prompts import PromptOptions

    values = dict(
        completion_token_limit=100,
        response_token_limit=20,
        system_description="a b c",
        system_response="r1 r2",
        system_intent="d e",
        system_intent_continuation="f",
        system_audience="g h i j",
        system_audience_continuation="k",
        system_chat_continuation="c",
    )
    values.update(overrides)
    return PromptOptions(**values)


class TestExtractionBudgets:
    def test_intent_budget_is_limit_minus_response_minus_fixed(self):
        from copilot_chat.chat.budget import BudgetAllocator

        # description (3) + intent (2) + continuation (1)
        assert BudgetAllocator(_options()).intent_extraction_budget() == 100 - 20 - 6

    def test_audience_budget_ignores_system_description(self):
        from copilot_chat.chat.budget import BudgetAllocator

        assert BudgetAllocator(_options()).audience_extraction_budget() == 100 - 20 - 5


class TestChatContextBudget:
    def test_subtracts_audience_and_intent(self):
        from copilot_chat.chat.budget import BudgetAllocator

        allocator = BudgetAllocator(_options())
        # fixed: 3 + 2 + 1, derived: 2 + 1
        assert allocator.chat_context_budget("x y", "z") == 100 - 20 - 9

    def test_overdrawn_budget_is_zero(self):
        from copilot_chat.chat.budget import BudgetAllocator

        allocator = BudgetAllocator(_options(completion_token_limit=10))
        assert allocator.chat_context_budget("x y", "z") == 0
        assert allocator.memories_budget(0) == 0

    def test_session_description_changes_the_budget(self):
        from copilot_chat.chat.budget import BudgetAllocator

        options = _options().with_system_description("one two three four five six seven")
        assert BudgetAllocator(options).chat_context_budget("", "") == 100 - 20 - 10


class TestWeightedBudgets:
    def test_fractions_of_remaining(self):
        from copilot_chat.chat.budget import BudgetAllocator

        allocator = BudgetAllocator(_options(
            memories_context_weight=0.5,
            document_context_weight=0.3,
            external_information_context_weight=0.25,
        ))
        assert allocator.memories_budget(71) == 35
        assert allocator.documents_budget(71) == 21
        assert allocator.external_information_budget(71) == 17

    def test_weights_are_not_normalized(self):
        from copilot_chat.chat.budget import BudgetAllocator

        allocator = BudgetAllocator(_options(
            memories_context_weight=0.5,
            document_context_weight=0.25,
            external_information_context_weight=0.75,
        ))
        total = (
            allocator.memories_budget(100)
            + allocator.documents_budget(100)
            + allocator.external_information_budget(100)
        )
        assert total == 150

    @pytest.mark.parametrize("remaining", [0, -5])
    def test_never_negative(self, remaining):
        from copilot_chat.chat.budget import BudgetAllocator

        assert BudgetAllocator(_options()).documents_budget(remaining) == 0
