"""Configuration for the chat response service."""

import os
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Environment-based configuration."""

    # Service
    host: str = "0.0.0.0"
    port: int = 8095
    log_level: str = "INFO"

    # MongoDB (chat sessions + chat messages)
    mongodb_url: str = os.getenv(
        "MONGODB_URL", "mongodb://localhost:27017/copilotchat"
    )
    mongodb_database: str = os.getenv("MONGODB_DATABASE", "copilotchat")

    # Long-term memory service (semantic + document memories)
    memory_service_url: str = os.getenv(
        "MEMORY_SERVICE_URL", "http://copilot-memory:8080"
    )

    # External planning engine
    planner_url: str = os.getenv("PLANNER_URL", "http://copilot-planner:8080")

    # Client relay (empty = local SSE subscribers only)
    relay_url: str = os.getenv("RELAY_URL", "")

    # Timeouts (seconds)
    http_timeout_seconds: float = float(os.getenv("HTTP_TIMEOUT_SECONDS", "60"))
    relay_timeout_seconds: float = 5.0
    llm_heartbeat_seconds: float = float(os.getenv("LLM_HEARTBEAT_SECONDS", "120"))

    # LLM (litellm model strings)
    llm_api_base: str = os.getenv("LLM_API_BASE", "")
    openai_api_key: str = os.getenv("OPENAI_API_KEY", "")
    completion_model: str = os.getenv("COMPLETION_MODEL", "openai/gpt-4o-mini")
    chat_model: str = os.getenv("CHAT_MODEL", "openai/gpt-4o")

    # Token budget
    completion_token_limit: int = 4096
    response_token_limit: int = 1024

    # Context weights (fractions of the remaining budget, not clamped)
    memories_context_weight: float = 0.5
    document_context_weight: float = 0.3
    external_information_context_weight: float = 0.3

    # Retrieval relevance cut-offs
    memory_min_relevance: float = 0.8
    document_min_relevance: float = 0.66

    # Intent / audience extraction sampling
    intent_temperature: float = 0.7
    intent_top_p: float = 1.0
    intent_frequency_penalty: float = 0.5
    intent_presence_penalty: float = 0.5

    # Bot response sampling
    response_temperature: float = 0.7
    response_top_p: float = 1.0
    response_frequency_penalty: float = 0.5
    response_presence_penalty: float = 0.5

    knowledge_cutoff_date: str = "Saturday, January 1, 2022"

    class Config:
        env_prefix = "COPILOT_CHAT_"


settings = Settings()
