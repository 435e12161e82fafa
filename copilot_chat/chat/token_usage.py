"""Per-stage token usage bookkeeping for one chat turn."""

from __future__ import annotations

from enum import Enum

from copilot_chat.tokens import count_tokens


class TokenStage(str, Enum):
    AUDIENCE_EXTRACTION = "AudienceExtraction"
    INTENT_EXTRACTION = "IntentExtraction"
    META_PROMPT = "MetaPromptTemplate"
    SYSTEM_COMPLETION = "SystemCompletion"


class TokenAccountant:
    """Maps stage name -> tokens used.

    Sub-stages (intent, audience) record into their own child accountant;
    the turn copies the result back with ``merge`` once the stage succeeded.
    """

    def __init__(self) -> None:
        self._usage: dict[str, int] = {}

    def record(self, stage: TokenStage, tokens: int) -> None:
        self._usage[stage.value] = int(tokens)

    def get(self, stage: TokenStage) -> int | None:
        return self._usage.get(stage.value)

    def child(self) -> "TokenAccountant":
        return TokenAccountant()

    def merge(self, other: "TokenAccountant") -> None:
        self._usage.update(other._usage)

    def usage(self, completion_content: str | None = None) -> dict[str, int]:
        """Snapshot of the map; pass the final bot content to add the completion cost."""
        result = dict(self._usage)
        if completion_content is not None:
            result[TokenStage.SYSTEM_COMPLETION.value] = count_tokens(completion_content)
        return result
