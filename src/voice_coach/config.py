"""
Application configuration using pydantic-settings.

Loads configuration from environment variables and .env files.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Remote model services (OpenAI-compatible)
    openai_api_key: str = Field(
        default="",
        description="API key for the chat, transcription and speech services",
    )
    openai_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="Base URL of the OpenAI-compatible API",
    )
    openai_model: str = Field(
        default="gpt-5-nano",
        description="Chat model used to generate coach replies",
    )
    openai_stt_model: str = Field(
        default="gpt-4o-mini-transcribe",
        description="Speech-to-text model",
    )
    openai_tts_model: str = Field(
        default="gpt-4o-mini-tts",
        description="Text-to-speech model",
    )
    openai_tts_voice: str = Field(
        default="alloy",
        description="Voice selector for speech synthesis",
    )

    # Timeouts (seconds). A timeout counts as a remote failure.
    llm_timeout: float = Field(default=120.0, description="Timeout for chat requests")
    stt_timeout: float = Field(default=60.0, description="Timeout for transcription requests")
    tts_timeout: float = Field(default=60.0, description="Timeout for speech synthesis requests")
    search_timeout: float = Field(default=10.0, description="Timeout for reference/media search")

    # Reference and media search
    reference_search_endpoint: str = Field(
        default="https://en.wikipedia.org/w/api.php",
        description="MediaWiki search endpoint used for research references",
    )
    max_references: int = Field(default=3, description="Maximum references attached to a reply")
    youtube_api_key: str = Field(
        default="",
        description="YouTube Data API key; when empty a default track is used",
    )
    youtube_search_endpoint: str = Field(
        default="https://www.googleapis.com/youtube/v3/search",
        description="YouTube Data API search endpoint",
    )

    # Conversation log storage
    log_backend: Literal["jsonl", "sql", "none"] = Field(
        default="jsonl",
        description="Where conversation records are stored",
    )
    log_dir: str = Field(default="./logs", description="Directory for conversations.jsonl")
    log_database_url: str = Field(
        default="sqlite+aiosqlite:///./logs/conversations.db",
        description="SQLAlchemy async URL for the sql log backend",
    )

    # Playback
    playback_rate: float = Field(
        default=1.3,
        description="Speech playback rate, applied only where pitch can be preserved",
    )

    # Application
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns:
        Settings: Application settings instance.
    """
    return Settings()
