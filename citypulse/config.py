"""
CityPulse Configuration

Loads configuration from environment variables with sensible defaults.
"""

import os
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()


def _optional_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw not in (None, "") else default


class Config:
    """Engine configuration loaded from environment variables."""

    # LLM Provider Configuration
    LLM_PROVIDER: str | None = os.getenv("LLM_PROVIDER")
    LLM_MODEL: str | None = os.getenv("LLM_MODEL")

    # API Keys
    ANTHROPIC_API_KEY: str | None = os.getenv("ANTHROPIC_API_KEY")
    OPENAI_API_KEY: str | None = os.getenv("OPENAI_API_KEY")

    # Ask the text generator for conversation turns (templated candidates are
    # always computed and used as the fallback)
    LLM_RESPONSES: bool = os.getenv("CITYPULSE_LLM_RESPONSES", "").lower() in ("1", "true", "yes")
    # Upper bound for a single text generation call. Must stay below the
    # conversation aging period so a slow provider never stalls a tick.
    TEXT_GENERATION_TIMEOUT_SECONDS: float = float(
        os.getenv("TEXT_GENERATION_TIMEOUT_SECONDS", "25")
    )

    # Periodic task intervals (seconds)
    ACTIVITY_INTERVAL_SECONDS: float = float(os.getenv("ACTIVITY_INTERVAL_SECONDS", "60"))
    DISCOVERY_INTERVAL_SECONDS: float = float(os.getenv("DISCOVERY_INTERVAL_SECONDS", "120"))
    SOCIAL_GRAPH_INTERVAL_SECONDS: float = float(os.getenv("SOCIAL_GRAPH_INTERVAL_SECONDS", "3600"))
    AGING_INTERVAL_SECONDS: float = float(os.getenv("AGING_INTERVAL_SECONDS", "30"))
    EVENT_INTERVAL_SECONDS: float = float(os.getenv("EVENT_INTERVAL_SECONDS", "300"))
    EVENT_PROBABILITY: float = float(os.getenv("EVENT_PROBABILITY", "0.3"))

    # Conversation lifecycle
    CONVERSATION_IDLE_SECONDS: float = float(os.getenv("CONVERSATION_IDLE_SECONDS", "300"))
    CONVERSATION_TIMEOUT_SECONDS: float = float(os.getenv("CONVERSATION_TIMEOUT_SECONDS", "1800"))
    MAX_CONVERSATION_SECONDS: float = float(os.getenv("MAX_CONVERSATION_SECONDS", "1200"))
    MAX_CONVERSATION_MESSAGES: int = int(os.getenv("MAX_CONVERSATION_MESSAGES", "20"))

    # Social graph
    INTERACTION_RETENTION_SECONDS: float = float(
        os.getenv("INTERACTION_RETENTION_SECONDS", str(24 * 60 * 60))
    )
    FRIENDSHIP_SENTIMENT_THRESHOLD: float = float(os.getenv("FRIENDSHIP_SENTIMENT_THRESHOLD", "0.7"))

    # Retention limits for the in-memory arenas
    CONVERSATION_HISTORY_LIMIT: int = int(os.getenv("CONVERSATION_HISTORY_LIMIT", "200"))
    ACTIVE_EVENT_LIMIT: int = int(os.getenv("ACTIVE_EVENT_LIMIT", "100"))
    INTERACTION_HISTORY_LIMIT: int = int(os.getenv("INTERACTION_HISTORY_LIMIT", "50"))

    # Cascades. 0 disables cascades, a negative value removes the bound.
    MAX_CASCADE_DEPTH: int = _optional_int("MAX_CASCADE_DEPTH", 3)

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def validate(cls) -> None:
        """Validate configuration and raise errors for inconsistent values."""
        if bool(cls.LLM_PROVIDER) != bool(cls.LLM_MODEL):
            raise ValueError(
                "LLM_PROVIDER and LLM_MODEL must be set together. "
                "Leave both unset to run with templated text only."
            )

        if cls.LLM_PROVIDER == "anthropic" and not cls.ANTHROPIC_API_KEY:
            raise ValueError(
                "ANTHROPIC_API_KEY is required when using the 'anthropic' provider"
            )

        if cls.LLM_PROVIDER == "openai" and not cls.OPENAI_API_KEY:
            raise ValueError(
                "OPENAI_API_KEY is required when using the 'openai' provider"
            )

        if not 0.0 <= cls.EVENT_PROBABILITY <= 1.0:
            raise ValueError("EVENT_PROBABILITY must be within [0, 1]")

        if cls.TEXT_GENERATION_TIMEOUT_SECONDS >= cls.AGING_INTERVAL_SECONDS:
            raise ValueError(
                "TEXT_GENERATION_TIMEOUT_SECONDS must be shorter than AGING_INTERVAL_SECONDS "
                f"({cls.TEXT_GENERATION_TIMEOUT_SECONDS}s >= {cls.AGING_INTERVAL_SECONDS}s)"
            )

    @classmethod
    def display(cls) -> str:
        """Return a formatted string showing current configuration."""
        cascade = "unbounded" if cls.MAX_CASCADE_DEPTH < 0 else str(cls.MAX_CASCADE_DEPTH)
        lines = [
            "CityPulse Configuration:",
            f"  LLM Provider: {cls.LLM_PROVIDER or 'none (templated text)'}",
            f"  LLM Model: {cls.LLM_MODEL or '-'}",
            f"  LLM Responses: {cls.LLM_RESPONSES}",
            f"  Activity/Discovery/Aging: {cls.ACTIVITY_INTERVAL_SECONDS:g}s/"
            f"{cls.DISCOVERY_INTERVAL_SECONDS:g}s/{cls.AGING_INTERVAL_SECONDS:g}s",
            f"  Events: every {cls.EVENT_INTERVAL_SECONDS:g}s at p={cls.EVENT_PROBABILITY}",
            f"  Max Cascade Depth: {cascade}",
        ]
        return "\n".join(lines)
