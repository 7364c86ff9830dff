"""
Settings Module - Centralized Configuration Management
=======================================================

ARCHITECTURAL DECISION:
- All configuration is loaded from environment variables (no hardcoded secrets)
- Settings are immutable dataclasses grouped by concern
- Single source of truth for all configurable values

EXTENSIBILITY:
- To switch LLM provider: point LLM_API_URL at any OpenAI-compatible endpoint
- To share rate limits across processes: plug a different RateLimiterStore
"""

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv

# Load .env file if present (development convenience)
load_dotenv()


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except ValueError:
        return default


@dataclass(frozen=True)
class LLMSettings:
    """OpenAI-compatible chat completion settings."""

    api_key: str = field(default_factory=lambda: os.getenv("OPENAI_API_KEY", ""))
    api_url: str = field(
        default_factory=lambda: os.getenv(
            "LLM_API_URL", "https://api.openai.com/v1/chat/completions"
        )
    )
    model: str = field(default_factory=lambda: os.getenv("LLM_MODEL", "gpt-4o-mini"))
    timeout_seconds: float = field(default_factory=lambda: _env_float("LLM_TIMEOUT_SECONDS", 30))

    # Transient failures only (timeouts, connection errors, 429, 5xx)
    max_retries: int = field(default_factory=lambda: _env_int("LLM_MAX_RETRIES", 2))
    retry_backoff_seconds: float = field(
        default_factory=lambda: _env_float("LLM_RETRY_BACKOFF_SECONDS", 1.0)
    )


@dataclass(frozen=True)
class ReplySettings:
    """Reply drafting and batch settings."""

    temperature: float = 0.3
    max_tokens_cap: int = 200
    chunk_size: int = field(default_factory=lambda: _env_int("REPLY_CHUNK_SIZE", 5))

    # Pause between chunks to stay friendly with provider rate limits
    chunk_delay_seconds: float = field(
        default_factory=lambda: _env_float("REPLY_CHUNK_DELAY_SECONDS", 1.0)
    )
    recent_replies_window: int = 20
    retry_limit: int = 20


@dataclass(frozen=True)
class InsightsSettings:
    """Weekly digest settings."""

    temperature: float = 0.3
    max_tokens: int = 2500
    max_reviews_in_prompt: int = 100


@dataclass(frozen=True)
class RateLimitSettings:
    """Per-caller limits for AI-backed endpoints."""

    max_requests: int = field(default_factory=lambda: _env_int("RATE_LIMIT_MAX_REQUESTS", 10))
    window_seconds: int = field(default_factory=lambda: _env_int("RATE_LIMIT_WINDOW_SECONDS", 60))


@dataclass(frozen=True)
class Settings:
    """
    Root settings container - Single source of truth for all configuration.

    Usage:
        from replydesk.infrastructure.config import get_settings
        settings = get_settings()
        print(settings.llm.model)
    """

    llm: LLMSettings = field(default_factory=LLMSettings)
    reply: ReplySettings = field(default_factory=ReplySettings)
    insights: InsightsSettings = field(default_factory=InsightsSettings)
    rate_limit: RateLimitSettings = field(default_factory=RateLimitSettings)

    database_file: Path = field(
        default_factory=lambda: Path(os.getenv("DATABASE_FILE", "replydesk.db"))
    )

    def validate(self) -> list[str]:
        """
        Validate settings and return list of warnings/errors.
        Returns empty list if all settings are valid.
        """
        issues = []

        if not self.llm.api_key:
            issues.append(
                "WARNING: OPENAI_API_KEY not set. "
                "Replies will use fallback templates and digests the heuristic summary."
            )

        if self.reply.chunk_size < 1:
            issues.append(
                f"WARNING: REPLY_CHUNK_SIZE={self.reply.chunk_size} is below 1. "
                "Chunks of 1 will be used."
            )

        if self.rate_limit.max_requests < 1 or self.rate_limit.window_seconds < 1:
            issues.append(
                "WARNING: RATE_LIMIT_MAX_REQUESTS and RATE_LIMIT_WINDOW_SECONDS "
                "should both be positive."
            )

        return issues


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get singleton Settings instance.
    Cached to ensure consistent settings throughout application lifecycle.
    """
    return Settings()
