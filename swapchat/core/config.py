"""
Application configuration using pydantic-settings.

WHAT: Centralized config from environment variables
WHY: Type-safe, validated config with sensible defaults
HOW: Pydantic BaseSettings reads from .env and environment
"""

from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Literal
from pathlib import Path


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # App metadata
    APP_NAME: str = "SwapChat Sync"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False

    # Remote data service selection
    DATA_SERVICE_MODE: Literal["local", "http"] = "local"
    DATA_SERVICE_BASE_URL: str = "http://localhost:3000/api"
    PUSH_STREAM_PATH: str = "/chat/{conversation_id}/events"

    # Local reference data service (SQLite)
    DATABASE_URL: str = "sqlite:///./data/swapchat.db"

    # Timeouts (seconds)
    SEND_TIMEOUT_SECONDS: float = 10.0
    LOAD_TIMEOUT_SECONDS: float = 5.0

    # Synchronization
    POLL_INTERVAL_SECONDS: float = 3.0
    POLL_PAGE_LIMIT: int = 50
    DUPLICATE_WINDOW_SECONDS: float = 5.0

    # Remote request retries (reads only)
    MAX_RETRIES: int = 3
    RETRY_DELAY: float = 1.0  # seconds, base for exponential backoff

    # Push transport
    PUSH_RECONNECT_DELAY: float = 2.0

    # CORS - accepts comma-separated string or list
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:3001"

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS_ORIGINS from comma-separated string or list."""
        if isinstance(v, list):
            return ",".join(v)
        return v

    def get_cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "./data/logs/swapchat.log"

    # Streaming / SSE
    SSE_HEARTBEAT_INTERVAL: int = 15  # seconds between heartbeat events

    class Config:
        env_file = [
            str(Path(__file__).parent.parent.parent / ".env"),
        ]
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


# Singleton instance
settings = Settings()
