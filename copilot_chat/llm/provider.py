"""LLM provider using litellm.

Two call shapes:
- ``complete_text``: one blocking completion (intent/audience extraction),
  returns text plus the token usage the backend reported
- ``stream_chat``: streamed bot response, yields text chunks as they arrive

Streams use heartbeat liveness detection instead of a hard timeout:
if no chunk arrives for ``llm_heartbeat_seconds`` → HeartbeatTimeoutError.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator

import litellm

from copilot_chat.chat.prompts import SamplingProfile
from copilot_chat.config import settings
from copilot_chat.tokens import count_tokens

logger = logging.getLogger(__name__)


class HeartbeatTimeoutError(Exception):
    """LLM stopped sending tokens (heartbeat dead)."""
    pass


@dataclass
class CompletionResult:
    text: str
    total_tokens: int


class LLMProvider:
    """Unified LLM access for the chat pipeline."""

    def __init__(
        self,
        completion_model: str | None = None,
        chat_model: str | None = None,
        api_base: str | None = None,
        heartbeat_seconds: float | None = None,
    ):
        self.completion_model = completion_model or settings.completion_model
        self.chat_model = chat_model or settings.chat_model
        self.api_base = api_base if api_base is not None else settings.llm_api_base
        self.heartbeat_seconds = heartbeat_seconds or settings.llm_heartbeat_seconds

    def _build_kwargs(self, model: str, prompt: str, profile: SamplingProfile) -> dict:
        kwargs: dict = {
            "model": model,
            "messages": [{"role": "system", "content": prompt}],
            "max_tokens": profile.max_tokens,
            "temperature": profile.temperature,
            "top_p": profile.top_p,
            "frequency_penalty": profile.frequency_penalty,
            "presence_penalty": profile.presence_penalty,
        }
        if profile.stop:
            kwargs["stop"] = list(profile.stop)
        if self.api_base:
            kwargs["api_base"] = self.api_base
        if settings.openai_api_key:
            kwargs["api_key"] = settings.openai_api_key
        return kwargs

    async def complete_text(self, prompt: str, profile: SamplingProfile) -> CompletionResult:
        """Blocking completion; token usage falls back to local counting if not reported."""
        kwargs = self._build_kwargs(self.completion_model, prompt, profile)
        logger.info("LLM completion call: model=%s", self.completion_model)

        response = await litellm.acompletion(**kwargs)

        text = response.choices[0].message.content or ""
        usage = getattr(response, "usage", None)
        total_tokens = getattr(usage, "total_tokens", None) if usage else None
        if total_tokens is None:
            total_tokens = count_tokens(prompt) + count_tokens(text)

        logger.info(
            "LLM completion done: model=%s, %d tokens, %d chars",
            self.completion_model, total_tokens, len(text),
        )
        return CompletionResult(text=text, total_tokens=total_tokens)

    async def stream_chat(self, prompt: str, profile: SamplingProfile) -> AsyncIterator[str]:
        """Stream the bot response as text chunks (finite, not restartable)."""
        kwargs = self._build_kwargs(self.chat_model, prompt, profile)
        kwargs["stream"] = True
        logger.info("LLM streaming call: model=%s", self.chat_model)

        response = await litellm.acompletion(**kwargs)

        chunk_count = 0
        async for chunk in self._iter_with_heartbeat(response):
            delta = chunk.choices[0].delta if chunk.choices else None
            if delta and delta.content:
                chunk_count += 1
                yield delta.content

        logger.info("LLM streaming complete: model=%s, %d chunks", self.chat_model, chunk_count)

    async def _iter_with_heartbeat(self, stream):
        """Iterate over streaming chunks with heartbeat timeout.

        Raises HeartbeatTimeoutError if no chunk arrives for heartbeat_seconds.
        """
        aiter = stream.__aiter__()
        while True:
            try:
                chunk = await asyncio.wait_for(
                    aiter.__anext__(),
                    timeout=self.heartbeat_seconds,
                )
                yield chunk
            except asyncio.TimeoutError:
                raise HeartbeatTimeoutError(
                    f"LLM stopped sending tokens for {self.heartbeat_seconds}s"
                )
            except StopAsyncIteration:
                return


# Singleton
llm_provider = LLMProvider()
