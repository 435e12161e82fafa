"""Chat API endpoints — FastAPI router.

Endpoints:
- POST /chats/{chat_id}/messages → generate the bot response for a user message
- GET  /chats/{chat_id}/events   → SSE stream of message/status events for a chat
"""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, HTTPException, Request
from sse_starlette.sse import EventSourceResponse

from copilot_chat.errors import ChatTurnError, MessageNotFound, SessionNotFound
from copilot_chat.models import ChatRequest

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/chats/{chat_id}/messages")
async def generate_response(chat_id: str, body: ChatRequest, request: Request):
    """Run one chat turn and return the stored bot message.

    Partial output is pushed to the chat's event stream while this runs.
    """
    orchestrator = request.app.state.orchestrator
    turn = body.model_copy(update={"chat_id": chat_id})

    try:
        message = await orchestrator.generate_response(turn)
    except (SessionNotFound, MessageNotFound) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ChatTurnError as e:
        logger.exception("Chat turn failed for chat %s", chat_id)
        raise HTTPException(status_code=500, detail=str(e))

    variables = []
    if message.token_usage is not None:
        variables.append({"key": "tokenUsage", "value": json.dumps(message.token_usage)})
    else:
        logger.warning("Token usage unknown for message %s", message.id)

    return {
        "value": message.content,
        "message": message.model_dump(mode="json"),
        "variables": variables,
    }


@router.get("/chats/{chat_id}/events")
async def chat_events(chat_id: str, request: Request):
    """SSE: ReceiveMessage / ReceiveMessageUpdate / ReceiveBotResponseStatus."""
    hub = request.app.state.relay_hub
    queue = hub.subscribe(chat_id)

    async def event_generator():
        try:
            while True:
                event = await queue.get()
                yield event.to_sse()
        finally:
            hub.unsubscribe(chat_id, queue)

    return EventSourceResponse(event_generator())
