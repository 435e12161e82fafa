"""HTTP surface tests (FastAPI TestClient, orchestrator replaced)."""

from __future__ import annotations

import json

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from copilot_chat.errors import ExtractionFailed, MessageNotFound, SessionNotFound, StreamingFailed


class StubOrchestrator:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.requests = []

    async def generate_response(self, request):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self.result


def _client(orchestrator):
    from copilot_chat.chat.router import router

    app = FastAPI()
    app.include_router(router)
    app.state.orchestrator = orchestrator
    return TestClient(app)


BODY = {"message": "hi bot", "userId": "alice", "userName": "Alice"}


class TestGenerateResponseEndpoint:
    def test_returns_bot_message_and_token_usage(self):
        from copilot_chat.models import ChatMessage

        message = ChatMessage.create_bot_response("chat-1", "hello", "", token_usage={"SystemCompletion": 1})
        orchestrator = StubOrchestrator(result=message)

        resp = _client(orchestrator).post("/chats/chat-1/messages", json=BODY)

        assert resp.status_code == 200
        data = resp.json()
        assert data["value"] == "hello"
        assert data["message"]["id"] == message.id
        assert data["variables"] == [{"key": "tokenUsage", "value": json.dumps({"SystemCompletion": 1})}]
        assert orchestrator.requests[0].chat_id == "chat-1"
        assert orchestrator.requests[0].user_name == "Alice"

    def test_unknown_usage_is_omitted(self):
        from copilot_chat.models import ChatMessage

        message = ChatMessage.create_bot_response("chat-1", "hello", "")
        resp = _client(StubOrchestrator(result=message)).post("/chats/chat-1/messages", json=BODY)
        assert resp.json()["variables"] == []

    @pytest.mark.parametrize("error,status", [
        (SessionNotFound("chat-1"), 404),
        (MessageNotFound("m-1"), 404),
        (ExtractionFailed("IntentExtraction", "down"), 500),
        (StreamingFailed("m-2", "reset"), 500),
    ])
    def test_errors_map_to_status(self, error, status):
        resp = _client(StubOrchestrator(error=error)).post("/chats/chat-1/messages", json=BODY)
        assert resp.status_code == status

    def test_invalid_body(self):
        resp = _client(StubOrchestrator()).post("/chats/chat-1/messages", json={"message": "hi"})
        assert resp.status_code == 422
