"""End-to-end chat turn tests with in-memory collaborators."""

from __future__ import annotations

import asyncio

import pytest

from conftest import (
    FakeLLM,
    FakeMemoryClient,
    FakeMessageRepository,
    FakePlannerClient,
    FakeRelay,
    FakeSessionRepository,
)


def _session(description=""):
    from copilot_chat.models import ChatSession

    return ChatSession(id="chat-1", title="Tea", system_description=description)


def _request(**kwargs):
    from copilot_chat.models import ChatRequest

    values = {"message": "bot, I want tea", "userId": "alice", "userName": "alice", "chatId": "chat-1"}
    values.update(kwargs)
    return ChatRequest.model_validate(values)


def _proposed(state="NoOp", user_intent=""):
    from copilot_chat.models import Plan, PlanState, ProposedPlan

    return ProposedPlan(proposed_plan=Plan(description="Brew tea"), state=PlanState(state), user_intent=user_intent)


class Harness:
    def __init__(self, options, clock, llm=None, planner=None, memory=None, sessions=None, messages=()):
        from copilot_chat.chat.orchestrator import ChatTurnOrchestrator

        self.sessions = FakeSessionRepository([_session()] if sessions is None else sessions)
        self.messages = FakeMessageRepository(messages)
        self.llm = llm or FakeLLM(completions=[("alice", 11), ("wants tea", 13)], chunks=["Sure", " thing"])
        self.planner = planner or FakePlannerClient()
        self.memory = memory or FakeMemoryClient()
        self.relay = FakeRelay()
        self.orchestrator = ChatTurnOrchestrator(
            sessions=self.sessions,
            messages=self.messages,
            llm=self.llm,
            memory_client=self.memory,
            planner_client=self.planner,
            relay=self.relay,
            options=options,
            clock=clock,
        )

    def run(self, request):
        return asyncio.run(self.orchestrator.generate_response(request))


class TestResponseTurn:
    def test_end_to_end(self, options, clock):
        from copilot_chat.models import AuthorRole

        h = Harness(options, clock)
        message = h.run(_request())

        assert message.content == "Sure thing"
        assert message.author_role == AuthorRole.BOT
        stored = h.messages.for_chat("chat-1")
        assert [m.author_role for m in stored] == [AuthorRole.USER, AuthorRole.BOT]
        assert stored[1].content == "Sure thing"

        usage = message.token_usage
        assert usage["AudienceExtraction"] == 11
        assert usage["IntentExtraction"] == 13
        assert usage["SystemCompletion"] == 2
        assert usage["MetaPromptTemplate"] > 0

    def test_stage_outputs_reach_the_prompt(self, options, clock):
        h = Harness(options, clock)
        h.run(_request())

        prompt = h.llm.stream_prompts[0]
        assert "List of participants: alice" in prompt
        assert "User intent: wants tea" in prompt
        assert "bot, I want tea" in prompt  # chat history includes the saved user message
        assert h.planner.calls[0][0] == "User intent: wants tea"
        assert h.memory.extractions == [("chat-1", "User intent: wants tea", "Sure thing")]

    def test_status_milestones_in_order(self, options, clock):
        h = Harness(options, clock)
        h.run(_request())

        statuses = h.relay.statuses()
        expected = [
            "Saving user message to chat history",
            "Extracting audience",
            "Extracting user intent",
            "Calculating remaining token budget",
            "Acquiring external information from planner",
            "Extracting semantic and document memories",
            "Extracting chat history",
            "Generating bot response",
            "Calculating token usage",
            "Saving message to chat history",
            "Generating semantic chat memory",
        ]
        assert statuses == expected

    def test_session_description_is_used_for_this_turn_only(self, options, clock):
        h = Harness(options, clock, sessions=[_session("You are a tea sommelier.")])
        h.run(_request())

        assert h.llm.stream_prompts[0].startswith("You are a tea sommelier.")
        assert options.system_description != "You are a tea sommelier."

    def test_plan_user_intent_skips_intent_extraction(self, options, clock):
        llm = FakeLLM(completions=[("alice", 11)], chunks=["ok"])
        h = Harness(options, clock, llm=llm)
        message = h.run(_request(planUserIntent="User intent: brew tea"))

        assert len(llm.completion_prompts) == 1
        assert "IntentExtraction" not in message.token_usage
        assert h.planner.calls[0][0] == "User intent: brew tea"

    def test_memory_extraction_failure_does_not_fail_the_turn(self, options, clock):
        class BrokenExtraction(FakeMemoryClient):
            async def extract_chat_memories(self, chat_id, user_intent, response):
                raise RuntimeError("memory service down")

        h = Harness(options, clock, memory=BrokenExtraction())
        assert h.run(_request()).content == "Sure thing"


class TestFailures:
    def test_unknown_session_has_no_side_effects(self, options, clock):
        from copilot_chat.errors import SessionNotFound

        h = Harness(options, clock, sessions=[])
        with pytest.raises(SessionNotFound):
            h.run(_request())

        assert h.messages.docs == {}
        assert h.relay.events == []
        assert h.llm.completion_prompts == []

    def test_extraction_failure_stores_no_bot_message(self, options, clock):
        from copilot_chat.errors import ExtractionFailed
        from copilot_chat.models import AuthorRole

        h = Harness(options, clock, llm=FakeLLM(completion_error=RuntimeError("model down")))
        with pytest.raises(ExtractionFailed):
            h.run(_request())

        assert [m.author_role for m in h.messages.for_chat("chat-1")] == [AuthorRole.USER]

    def test_planner_failure_aborts_before_streaming(self, options, clock):
        import httpx

        from copilot_chat.errors import PlanAcquisitionFailed

        h = Harness(options, clock, planner=FakePlannerClient(error=httpx.ConnectError("down")))
        with pytest.raises(PlanAcquisitionFailed):
            h.run(_request())

        assert h.llm.stream_prompts == []


class TestPlans:
    def test_proposed_plan_short_circuits(self, options, clock):
        from copilot_chat.models import ChatMessageType, ProposedPlan
        from copilot_chat.planner.acquirer import PlanAcquisition

        planner = FakePlannerClient(PlanAcquisition(proposed_plan=_proposed()))
        h = Harness(options, clock, planner=planner)
        message = h.run(_request())

        assert message.type == ChatMessageType.PLAN
        assert message.prompt == "Brew tea"
        assert ProposedPlan.from_json(message.content).user_intent == "User intent: wants tea"
        assert message.token_usage == {"AudienceExtraction": 11, "IntentExtraction": 13}
        assert h.llm.stream_prompts == []
        assert h.memory.queries == []
        assert h.messages.docs[message.id].plan.proposed_plan.description == "Brew tea"

    def test_cancelled_plan_gets_fixed_answer(self, options, clock, make_message):
        from copilot_chat.chat.orchestrator import PLAN_CANCELLED_RESPONSE
        from copilot_chat.models import ChatMessageType, PlanState

        proposed = _proposed(user_intent="User intent: wants tea")
        plan_message = make_message(proposed.to_json(), user_name="bot", type=ChatMessageType.PLAN, plan=proposed)
        h = Harness(options, clock, messages=[plan_message])

        message = h.run(_request(
            message="cancel",
            proposedPlan=_proposed(state="Rejected").to_json(),
            responseMessageId=plan_message.id,
            userCancelledPlan=True,
        ))

        assert message.content == PLAN_CANCELLED_RESPONSE
        assert h.messages.docs[plan_message.id].plan.state == PlanState.REJECTED
        assert len(h.messages.docs) == 3
        assert h.llm.completion_prompts == []
        assert ("updated", plan_message.id, h.messages.docs[plan_message.id].content) in h.relay.events

    def test_approved_plan_continues_with_result(self, options, clock, make_message):
        from copilot_chat.models import ChatMessageType, PlanState
        from copilot_chat.planner.acquirer import PlanAcquisition

        proposed = _proposed(user_intent="User intent: wants tea")
        plan_message = make_message(proposed.to_json(), user_name="bot", type=ChatMessageType.PLAN, plan=proposed)
        planner = FakePlannerClient(PlanAcquisition(plan_result="Kettle is on."))
        h = Harness(options, clock, planner=planner, messages=[plan_message],
                    llm=FakeLLM(completions=[("alice", 11)], chunks=["Done"]))

        message = h.run(_request(
            message="yes",
            proposedPlan=_proposed(state="Approved").to_json(),
            responseMessageId=plan_message.id,
            planUserIntent="User intent: wants tea",
        ))

        assert message.content == "Done"
        assert h.messages.docs[plan_message.id].plan.state == PlanState.APPROVED
        prompt = h.llm.stream_prompts[0]
        assert "Kettle is on." in prompt
        assert "Bot proposed plan to fulfill user intent: wants tea" in prompt

    def test_update_for_unknown_message(self, options, clock):
        from copilot_chat.errors import MessageNotFound

        h = Harness(options, clock)
        with pytest.raises(MessageNotFound):
            h.run(_request(proposedPlan=_proposed(state="Approved").to_json(), responseMessageId="missing"))

    def test_update_cannot_reach_another_chat(self, options, clock, make_message):
        from copilot_chat.errors import MessageNotFound
        from copilot_chat.models import AuthorRole, ChatMessageType

        proposed = _proposed(user_intent="User intent: wants tea")
        other = make_message(
            proposed.to_json(), user_name="bot", chat_id="chat-2", type=ChatMessageType.PLAN, plan=proposed,
        )
        h = Harness(options, clock, messages=[other])

        with pytest.raises(MessageNotFound):
            h.run(_request(proposedPlan=_proposed(state="Approved").to_json(), responseMessageId=other.id))

        assert h.messages.docs[other.id].content == proposed.to_json()
        assert [m.author_role for m in h.messages.for_chat("chat-1")] == [AuthorRole.USER]
        assert h.llm.completion_prompts == []
