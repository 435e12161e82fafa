"""Prometheus metrics for the chat response service.

Exposed via /metrics (Prometheus format).

Metric naming convention: chat_{subsystem}_{metric}_{unit}
"""

from prometheus_client import Counter, Histogram

# ---------------------------------------------------------------------------
# Turns
# ---------------------------------------------------------------------------
CHAT_TURNS = Counter(
    "chat_turns_total",
    "Chat turns by outcome",
    ["outcome"],  # "response", "plan_proposed", "plan_cancelled", "error"
)

CHAT_TURN_DURATION = Histogram(
    "chat_turn_duration_seconds",
    "Wall time of one chat turn",
    ["outcome"],
    buckets=(0.5, 1, 2, 5, 10, 20, 30, 60, 120),
)

# ---------------------------------------------------------------------------
# Token usage (billing)
# ---------------------------------------------------------------------------
CHAT_TOKENS = Counter(
    "chat_tokens_total",
    "Tokens consumed per pipeline stage",
    ["stage"],  # "AudienceExtraction", "IntentExtraction", "MetaPromptTemplate", "SystemCompletion"
)


def record_token_usage(usage: dict[str, int] | None) -> None:
    for stage, tokens in (usage or {}).items():
        CHAT_TOKENS.labels(stage=stage).inc(tokens)
