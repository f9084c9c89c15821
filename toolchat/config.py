"""Application configuration."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from toolchat.triggers import DEFAULT_KEYWORDS


class Settings(BaseSettings):
    """Environment-driven settings validated at startup."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    openrouter_api_key: str = Field(..., alias="OPENROUTER_API_KEY")
    openrouter_model: str = Field(..., alias="OPENROUTER_MODEL")
    openrouter_base_url: str = Field(
        default="https://openrouter.ai/api/v1",
        alias="OPENROUTER_BASE_URL",
    )
    database_path: Path = Field(default=Path("toolchat.db"), alias="DATABASE_PATH")
    request_timeout_seconds: float = Field(default=30.0, alias="REQUEST_TIMEOUT_SECONDS")
    # Upper bound on model calls per turn, including tool follow-ups.
    max_steps: int = Field(default=10, ge=1, alias="MAX_STEPS")
    scheduler_poll_interval_seconds: float = Field(default=2.0, alias="SCHEDULER_POLL_INTERVAL_SECONDS")
    schedule_requires_confirmation: bool = Field(default=False, alias="SCHEDULE_REQUIRES_CONFIRMATION")
    # Comma-separated words that make tools available for a turn.
    tool_trigger_keywords: str = Field(default=",".join(DEFAULT_KEYWORDS), alias="TOOL_TRIGGER_KEYWORDS")
    weather_base_url: str = Field(default="https://wttr.in", alias="WEATHER_BASE_URL")
    time_base_url: str = Field(default="https://worldtimeapi.org/api/timezone", alias="TIME_BASE_URL")
    conversation_id: str = Field(default="default", alias="CONVERSATION_ID")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")


def load_settings() -> Settings:
    """Load and validate settings."""

    return Settings()


def trigger_keywords(settings: Settings) -> tuple[str, ...]:
    """Return the keywords that enable tools, falling back to the defaults."""

    keywords = tuple(k.strip().lower() for k in settings.tool_trigger_keywords.split(",") if k.strip())
    return keywords or DEFAULT_KEYWORDS
