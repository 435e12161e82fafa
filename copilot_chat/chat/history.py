"""Chat history extraction under a token limit.

Messages are taken newest-first and kept while they fit the limit; the first
one that does not fit stops the scan (older messages are never used to fill
gaps). The kept lines are returned oldest-first.

Plan messages are rewritten to one short line before counting so that a
serialized plan cannot eat the whole history budget.
"""

from __future__ import annotations

import logging
import re
from typing import Callable, Iterable

from copilot_chat.models import ChatMessage, ChatMessageType
from copilot_chat.tokens import count_tokens

logger = logging.getLogger(__name__)

HISTORY_HEADER = "Chat history:"

# Records stored before messages carried a ``type`` discriminator
_LEGACY_PLAN_MARKER = 'proposedplan":'
_LEGACY_PLAN_PATTERN = re.compile(r'(\[.*?\]).*User Intent:User intent: (.*)(?="}})')

_INTENT_PREFIX = "User intent:"


def _strip_intent_prefix(intent: str) -> str:
    intent = intent.strip()
    if intent.lower().startswith(_INTENT_PREFIX.lower()):
        intent = intent[len(_INTENT_PREFIX):].strip()
    return intent


def format_history_entry(message: ChatMessage) -> str:
    """One history line for the prompt; plan payloads collapse to a summary."""
    if message.type == ChatMessageType.PLAN:
        intent = _strip_intent_prefix(message.plan.user_intent) if message.plan else ""
        if intent:
            return f"[{message.formatted_timestamp()}] Bot proposed plan to fulfill user intent: {intent}"
        return "Bot proposed plan"

    formatted = message.to_formatted_string()
    if _LEGACY_PLAN_MARKER in formatted.lower():
        match = _LEGACY_PLAN_PATTERN.search(formatted)
        if match:
            timestamp = match.group(1).strip()
            user_intent = match.group(2).strip()
            return f"{timestamp} Bot proposed plan to fulfill user intent: {user_intent}"
        return "Bot proposed plan"
    return formatted


def select_recent(
    lines_newest_first: Iterable[str],
    token_limit: int,
    counter: Callable[[str], int] = count_tokens,
) -> tuple[list[str], int]:
    """Keep newest lines while they fit; returns (chronological lines, tokens left)."""
    remaining = token_limit
    kept: list[str] = []
    for line in lines_newest_first:
        cost = counter(line)
        if remaining - cost < 0:
            break
        kept.append(line)
        remaining -= cost
    kept.reverse()
    return kept, remaining


class ChatHistoryExtractor:
    """Reads stored messages and renders the ``Chat history:`` block."""

    def __init__(self, messages):
        self._messages = messages

    async def extract(self, chat_id: str, token_limit: int) -> str:
        """History block costing at most ``token_limit`` tokens (header included)."""
        budget = token_limit - count_tokens(HISTORY_HEADER)
        if budget <= 0:
            return ""

        messages = await self._messages.find_by_chat_id(chat_id)
        newest_first = sorted(messages, key=lambda m: m.timestamp, reverse=True)
        lines, remaining = select_recent(
            (format_history_entry(m) for m in newest_first),
            budget,
            counter=lambda line: count_tokens(line + "\n"),
        )
        logger.info(
            "CHAT_CONTEXT: history %d/%d messages, %d of %d tokens left",
            len(lines), len(messages), remaining, token_limit,
        )
        return "\n".join([HISTORY_HEADER, *lines])
