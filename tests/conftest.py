"""Pytest configuration for copilot-chat tests.

Sets up a minimal environment for unit tests without requiring MongoDB,
an LLM backend or the memory/planner services. Collaborators are replaced
by the in-memory fakes below, and token counting uses a whitespace word
tokenizer so budgets are easy to compute by hand.
"""

import asyncio
import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

# Add package root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

# Set minimal environment variables for Settings
os.environ.setdefault("MONGODB_URL", "mongodb://localhost:27017/copilotchat_test")
os.environ.setdefault("MEMORY_SERVICE_URL", "http://memory.test")
os.environ.setdefault("PLANNER_URL", "http://planner.test")


FIXED_NOW = datetime(2024, 1, 2, 10, 30, 0)


class WordTokenizer:
    """One token per whitespace-separated word."""

    def encode(self, text):
        return text.split()

    def decode(self, tokens):
        return " ".join(tokens)


@pytest.fixture(autouse=True)
def word_tokenizer(monkeypatch):
    import copilot_chat.tokens as tokens

    monkeypatch.setattr(tokens, "_tokenizer", WordTokenizer())
    yield


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeSessionRepository:
    def __init__(self, sessions=()):
        self.sessions = {s.id: s for s in sessions}

    async def find_by_id(self, chat_id):
        return self.sessions.get(chat_id)


class FakeMessageRepository:
    """Stores copies, like a real database would."""

    def __init__(self, messages=()):
        self.docs = {}
        for m in messages:
            self.docs[m.id] = m.model_copy(deep=True)
        self.writes = []

    async def find_by_id(self, message_id):
        doc = self.docs.get(message_id)
        return doc.model_copy(deep=True) if doc else None

    async def find_by_chat_id(self, chat_id):
        found = [m for m in self.docs.values() if m.chat_id == chat_id]
        return [m.model_copy(deep=True) for m in sorted(found, key=lambda m: m.timestamp)]

    async def create(self, message):
        self.writes.append(("create", message.id))
        self.docs[message.id] = message.model_copy(deep=True)
        return message

    async def upsert(self, message):
        self.writes.append(("upsert", message.id))
        self.docs[message.id] = message.model_copy(deep=True)
        return message

    def for_chat(self, chat_id):
        return sorted((m for m in self.docs.values() if m.chat_id == chat_id), key=lambda m: m.timestamp)


class FakeLLM:
    """Scripted completions and streamed chunks."""

    def __init__(self, completions=(), chunks=(), stream_error=None, completion_error=None):
        self.completions = list(completions)
        self.chunks = list(chunks)
        self.stream_error = stream_error
        self.completion_error = completion_error
        self.completion_prompts = []
        self.completion_profiles = []
        self.stream_prompts = []

    async def complete_text(self, prompt, profile):
        from copilot_chat.llm.provider import CompletionResult

        self.completion_prompts.append(prompt)
        self.completion_profiles.append(profile)
        if self.completion_error is not None:
            raise self.completion_error
        text, total_tokens = self.completions.pop(0)
        return CompletionResult(text=text, total_tokens=total_tokens)

    async def stream_chat(self, prompt, profile):
        self.stream_prompts.append(prompt)
        for chunk in self.chunks:
            await asyncio.sleep(0)
            yield chunk
        if self.stream_error is not None:
            raise self.stream_error


class FakeRelay:
    """Records the shorthand calls the pipeline makes."""

    def __init__(self):
        self.events = []

    def message_created(self, chat_id, user_id, message):
        self.events.append(("created", message.id, message.content))

    def message_updated(self, message):
        self.events.append(("updated", message.id, message.content))

    def status(self, chat_id, status):
        self.events.append(("status", status))

    def statuses(self):
        return [e[1] for e in self.events if e[0] == "status"]


class FakeMemoryClient:
    def __init__(self, items=None, delays=None, error=None):
        self.items = items or {}
        self.delays = delays or {}
        self.error = error
        self.queries = []
        self.extractions = []

    async def query(self, kind, query, chat_id, min_relevance):
        self.queries.append((kind, query, chat_id, min_relevance))
        await asyncio.sleep(self.delays.get(kind, 0))
        if self.error is not None:
            raise self.error
        return list(self.items.get(kind, []))

    async def extract_chat_memories(self, chat_id, user_intent, response):
        self.extractions.append((chat_id, user_intent, response))


class FakePlannerClient:
    def __init__(self, acquisition=None, error=None):
        self.acquisition = acquisition
        self.error = error
        self.calls = []

    async def acquire(self, user_intent, chat_id, token_limit):
        from copilot_chat.planner.acquirer import PlanAcquisition

        self.calls.append((user_intent, chat_id, token_limit))
        if self.error is not None:
            raise self.error
        return self.acquisition or PlanAcquisition()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def options():
    from copilot_chat.chat.prompts import PromptOptions

    return PromptOptions()


@pytest.fixture
def relay():
    return FakeRelay()


@pytest.fixture
def make_message():
    """Factory for stored messages with increasing timestamps."""
    from copilot_chat.models import ChatMessage

    base = datetime(2024, 1, 2, 9, 0, 0, tzinfo=timezone.utc)
    counter = {"n": 0}

    def _make(content, user_name="alice", chat_id="chat-1", **kwargs):
        counter["n"] += 1
        kwargs.setdefault("timestamp", base + timedelta(minutes=counter["n"]))
        return ChatMessage(
            user_id=kwargs.pop("user_id", user_name),
            user_name=user_name,
            chat_id=chat_id,
            content=content,
            **kwargs,
        )

    return _make
