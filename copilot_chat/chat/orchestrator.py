"""ChatTurnOrchestrator — generates one bot response for one user message.

Flow:
1. Load the chat session (SessionNotFound before any side effect)
2. Save the user message
3. Plan round-trip: update the proposing message in place; a cancelled plan
   answers with a fixed text and stops here
4. Extract audience, then user intent (history-budgeted LLM calls)
5. Compute the chat context budget
6. Ask the planner; a proposed plan becomes the answer and stops here
7. Query semantic + document memories concurrently
8. Assemble and render the prompt
9. Stream the answer, persist it with per-stage token usage
10. Ask the memory service to extract long-term memories (best-effort)

Status milestones are pushed to the client for UI feedback only.
All per-turn state (options copy, accountant, stage objects) lives in the
call; the orchestrator itself holds only collaborators and shared options.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Callable

from copilot_chat.chat.assembler import PromptAssembler
from copilot_chat.chat.budget import BudgetAllocator
from copilot_chat.chat.extraction import AudienceExtractor, IntentExtractor
from copilot_chat.chat.history import ChatHistoryExtractor
from copilot_chat.chat.prompts import PromptOptions
from copilot_chat.chat.streamer import ResponseStreamer
from copilot_chat.chat.token_usage import TokenAccountant, TokenStage
from copilot_chat.errors import SessionNotFound
from copilot_chat.memory.retriever import MemoryRetriever, MemoryServiceClient
from copilot_chat.metrics import CHAT_TURN_DURATION, CHAT_TURNS, record_token_usage
from copilot_chat.models import (
    AuthorRole,
    ChatMessage,
    ChatMessageType,
    ChatRequest,
    ProposedPlan,
)
from copilot_chat.planner.acquirer import ExternalPlanAcquirer, PlannerClient
from copilot_chat.tokens import count_tokens

logger = logging.getLogger(__name__)

PLAN_CANCELLED_RESPONSE = "I am sorry the plan did not meet your goals."


class ChatTurnOrchestrator:
    def __init__(
        self,
        sessions,
        messages,
        llm,
        memory_client: MemoryServiceClient,
        planner_client: PlannerClient,
        relay,
        options: PromptOptions,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._sessions = sessions
        self._messages = messages
        self._llm = llm
        self._memory_client = memory_client
        self._relay = relay
        self._options = options
        self._clock = clock
        self._plans = ExternalPlanAcquirer(planner_client, messages)

    async def generate_response(self, request: ChatRequest) -> ChatMessage:
        start = time.monotonic()
        try:
            message = await self._run_turn(request)
        except Exception:
            CHAT_TURNS.labels(outcome="error").inc()
            raise

        if request.user_cancelled_plan:
            outcome = "plan_cancelled"
        elif message.type == ChatMessageType.PLAN:
            outcome = "plan_proposed"
        else:
            outcome = "response"
        CHAT_TURNS.labels(outcome=outcome).inc()
        CHAT_TURN_DURATION.labels(outcome=outcome).observe(time.monotonic() - start)
        record_token_usage(message.token_usage)
        return message

    async def _run_turn(self, request: ChatRequest) -> ChatMessage:
        chat_id = request.chat_id
        session = await self._sessions.find_by_id(chat_id)
        if session is None:
            raise SessionNotFound(chat_id)

        # Turn-local copy; the shared options never see this session's description
        options = self._options.with_system_description(session.system_description)
        logger.info("CHAT_TURN: start chat=%s user=%s type=%s", chat_id, request.user_id, request.message_type)

        self._relay.status(chat_id, "Saving user message to chat history")
        await self._save_user_message(request)

        if request.has_plan_update:
            updated = await self._plans.apply_plan_update(chat_id, request.message_id, request.plan_json)
            self._relay.message_updated(updated)

        if request.user_cancelled_plan:
            logger.info("CHAT_TURN: plan cancelled by user (chat=%s)", chat_id)
            return await self._save_response(PLAN_CANCELLED_RESPONSE, "", chat_id, request.user_id, {})

        return await self._respond(request, options)

    async def _respond(self, request: ChatRequest, options: PromptOptions) -> ChatMessage:
        chat_id = request.chat_id
        accountant = TokenAccountant()
        allocator = BudgetAllocator(options)
        history = ChatHistoryExtractor(self._messages)

        self._relay.status(chat_id, "Extracting audience")
        audience = await self._extract(
            AudienceExtractor(self._llm, history, options, self._clock),
            chat_id, allocator.audience_extraction_budget(), accountant,
        )

        self._relay.status(chat_id, "Extracting user intent")
        if request.plan_user_intent:
            user_intent = request.plan_user_intent
        else:
            user_intent = await self._extract(
                IntentExtractor(self._llm, history, options, self._clock),
                chat_id, allocator.intent_extraction_budget(), accountant,
            )

        self._relay.status(chat_id, "Calculating remaining token budget")
        remaining = allocator.chat_context_budget(audience, user_intent)
        logger.info("CHAT_TURN: chat=%s remaining context budget=%d", chat_id, remaining)

        self._relay.status(chat_id, "Acquiring external information from planner")
        plan = await self._plans.acquire(user_intent, chat_id, allocator.external_information_budget(remaining))

        if plan.proposed_plan is not None:
            return await self._save_proposed_plan(plan.proposed_plan, user_intent, request, accountant)

        self._relay.status(chat_id, "Extracting semantic and document memories")
        retriever = MemoryRetriever(self._memory_client, options)
        chat_memories, document_memories = await retriever.retrieve(
            user_intent,
            chat_id,
            allocator.memories_budget(remaining),
            allocator.documents_budget(remaining),
        )

        assembler = PromptAssembler(history, options, self._relay, self._clock)
        prompt = await assembler.assemble(
            chat_id=chat_id,
            audience=audience,
            user_intent=user_intent,
            remaining_budget=remaining,
            chat_memories=chat_memories,
            document_memories=document_memories,
            plan=plan,
        )
        accountant.record(TokenStage.META_PROMPT, count_tokens(prompt.raw_content))

        self._relay.status(chat_id, "Generating bot response")
        streamer = ResponseStreamer(self._llm, self._messages, self._relay, options)
        message = await streamer.stream(chat_id, request.user_id, prompt, accountant)

        self._relay.status(chat_id, "Generating semantic chat memory")
        await self._extract_semantic_memory(chat_id, user_intent, message.content)

        logger.info("CHAT_TURN: done chat=%s message=%s usage=%s", chat_id, message.id, message.token_usage)
        return message

    async def _extract(self, extractor, chat_id: str, token_limit: int, accountant: TokenAccountant) -> str:
        # The stage records into its own accountant; copy back only on success
        stage_accountant = accountant.child()
        result = await extractor.extract(chat_id, token_limit, stage_accountant)
        accountant.merge(stage_accountant)
        return result

    async def _save_user_message(self, request: ChatRequest) -> ChatMessage:
        message = ChatMessage(
            user_id=request.user_id,
            user_name=request.user_name,
            chat_id=request.chat_id,
            content=request.message,
            author_role=AuthorRole.USER,
            type=ChatMessageType.parse(request.message_type),
        )
        await self._messages.create(message)
        return message

    async def _save_proposed_plan(
        self,
        proposed: ProposedPlan,
        user_intent: str,
        request: ChatRequest,
        accountant: TokenAccountant,
    ) -> ChatMessage:
        if not proposed.user_intent:
            proposed = proposed.model_copy(update={"user_intent": user_intent})
        logger.info("CHAT_TURN: plan proposed for chat=%s, waiting for approval", request.chat_id)
        return await self._save_response(
            proposed.to_json(),
            proposed.proposed_plan.description,
            request.chat_id,
            request.user_id,
            accountant.usage(),
            plan=proposed,
        )

    async def _save_response(
        self,
        content: str,
        prompt: str,
        chat_id: str,
        user_id: str,
        token_usage: dict[str, int],
        plan: ProposedPlan | None = None,
    ) -> ChatMessage:
        message = ChatMessage.create_bot_response(chat_id, content, prompt, token_usage, plan=plan)
        self._relay.message_created(chat_id, user_id, message)
        await self._messages.upsert(message)
        return message

    async def _extract_semantic_memory(self, chat_id: str, user_intent: str, response: str) -> None:
        try:
            await self._memory_client.extract_chat_memories(chat_id, user_intent, response)
        except Exception as e:
            logger.warning("Semantic memory extraction failed for chat %s: %s", chat_id, e)
