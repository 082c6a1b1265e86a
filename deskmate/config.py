from functools import lru_cache
from typing import List, Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging
    log_level: str = "INFO"
    log_format: Literal["json", "console"] = "json"
    service_name: str = "deskmate"

    # Storage - "memory" keeps everything in-process, "sql" uses database_url
    storage_backend: Literal["memory", "sql"] = "memory"
    database_url: str = "sqlite:///./deskmate.db"

    # Completion service
    google_ai_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.0-flash"
    gemini_temperature: float = 0.7
    gemini_max_output_tokens: int = 2048

    # Speech services
    elevenlabs_api_key: Optional[str] = None
    elevenlabs_api_url: str = "https://api.elevenlabs.io/v1"
    elevenlabs_voice_id: str = "21m00Tcm4TlvDq8ikWAM"
    elevenlabs_tts_model_id: str = "eleven_turbo_v2_5"
    elevenlabs_stt_model_id: str = "scribe_v1"

    # Agent behaviour
    default_agent_name: str = "Deskmate"
    timezone: str = "UTC"
    max_recent_messages: int = 20
    session_cache_enabled: bool = True

    # Time boxes for external calls (seconds)
    turn_timeout_seconds: float = 60.0
    speech_timeout_seconds: float = 30.0

    # Housekeeping
    cache_idle_seconds: int = 1800
    stale_connection_seconds: int = 300
    maintenance_interval_seconds: int = 60

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # CORS
    cors_origins: List[str] = ["*"]

    @property
    def voice_configured(self) -> bool:
        """Check if speech synthesis/transcription is available."""
        return bool(self.elevenlabs_api_key)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
