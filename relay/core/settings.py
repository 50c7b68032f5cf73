from functools import lru_cache
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Database - SQLite for local runs, any SQLAlchemy URL in deployments
    database_url: str = "sqlite:///./meet_relay.db"
    database_pool_size: int = 5
    database_max_overflow: int = 10

    # Application
    app_name: str = "Meet Transcript Relay"
    debug: bool = False
    log_level: str = "INFO"
    logs_dir: Path = Path("logs")
    cors_allow_origins: str = "*"

    # Meeting-bot provider
    recall_api_key: str | None = None
    recall_api_url: str = "https://us-west-2.recall.ai/api/v1"
    webhook_base_url: str | None = None

    # Outbound automation webhook
    n8n_webhook_url: str | None = None
    n8n_timeout_seconds: float = 30.0

    # HTTP client
    http_timeout_seconds: int = 30
    http_max_retries: int = 3

    # Intervention assembly
    intervention_idle_timeout_seconds: float = 5.0
    duplicate_window_seconds: float = 1.0
    persist_partial_interventions: bool = False

    # Routing
    broadcast_on_routing_miss: bool = True

    # Bot defaults
    default_bot_name: str = "Transcription Bot"
    default_language: str = "auto"
    default_transcription_type: str = "meeting_captions"
    deepgram_model: str = "nova-2"

    # Uploads
    max_bot_photo_bytes: int = 5 * 1024 * 1024
    max_output_audio_bytes: int = 10 * 1024 * 1024

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v):
        if not v:
            raise ValueError("DATABASE_URL must be set")
        return v

    @field_validator("intervention_idle_timeout_seconds", "duplicate_window_seconds")
    @classmethod
    def validate_non_negative(cls, v):
        if v < 0:
            raise ValueError("timing settings must be >= 0")
        return v

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


class ConfigurationError(Exception):
    """A setting required by the requested operation is missing."""

    def __init__(self, setting: str, message: str | None = None):
        self.setting = setting
        super().__init__(message or f"{setting.upper()} is not configured")
