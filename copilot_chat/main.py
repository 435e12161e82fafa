"""FastAPI application — chat response service.

Wiring:
- MongoDB (motor): chat sessions + chat messages
- litellm: intent/audience completions and the streamed bot answer
- memory service / planner: HTTP collaborators (httpx)
- MessageRelayHub: ordered client events → SSE subscribers (+ external relay)

Turns for different chats run concurrently; each turn keeps its state local.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from copilot_chat.chat.orchestrator import ChatTurnOrchestrator
from copilot_chat.chat.prompts import PromptOptions
from copilot_chat.chat.router import router as chat_router
from copilot_chat.config import settings
from copilot_chat.llm.provider import llm_provider
from copilot_chat.logging_utils import configure_logging
from copilot_chat.memory.retriever import MemoryServiceClient
from copilot_chat.planner.acquirer import PlannerClient
from copilot_chat.relay.client import RelayClient
from copilot_chat.relay.hub import MessageRelayHub
from copilot_chat.storage.repository import (
    chat_message_repository,
    chat_session_repository,
    mongo_connection,
)

configure_logging(settings.log_level)
logger = logging.getLogger(__name__)


class _HealthCheckAccessFilter(logging.Filter):
    """Drop GET /health from uvicorn access log."""

    def filter(self, record: logging.LogRecord) -> bool:
        msg = record.getMessage()
        if "GET /health " in msg:
            return False
        return True


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("Chat service starting on port %d", settings.port)
    logging.getLogger("uvicorn.access").addFilter(_HealthCheckAccessFilter())

    await mongo_connection.init()

    hub = MessageRelayHub(forwarder=RelayClient() if settings.relay_url else None)
    hub.start()

    app.state.relay_hub = hub
    app.state.orchestrator = ChatTurnOrchestrator(
        sessions=chat_session_repository,
        messages=chat_message_repository,
        llm=llm_provider,
        memory_client=MemoryServiceClient(),
        planner_client=PlannerClient(),
        relay=hub,
        options=PromptOptions.from_settings(settings),
    )
    logger.info(
        "Chat pipeline ready (completion_limit=%d, response_limit=%d, chat_model=%s)",
        settings.completion_token_limit, settings.response_token_limit, settings.chat_model,
    )
    yield

    await hub.stop()
    await mongo_connection.close()
    logger.info("Chat service stopped")


app = FastAPI(
    title="Copilot Chat",
    description="Chat response service: budgeted context assembly and streamed answers",
    version="0.1.0",
    lifespan=lifespan,
)
app.include_router(chat_router)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "ok", "service": "copilot-chat"}


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port)
