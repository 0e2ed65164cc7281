"""Application configuration via Pydantic Settings."""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings

# Resolve .env from the project root regardless of CWD
_ENV_FILE = Path(__file__).resolve().parents[3] / ".env"


class Settings(BaseSettings):
    """Central configuration loaded from environment variables / .env file."""

    # Database
    database_url: str = "sqlite+aiosqlite:///./prism.db"

    # AI
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.5-flash"
    chat_responder: str = "keyword"  # keyword, gemini, hybrid
    ai_confidence_threshold: float = 0.70
    ai_timeout_seconds: float = 30.0

    # Chat
    escalation_message: str = (
        "Let me connect you with our AOPR team. "
        "They'll be able to help you with this question."
    )
    manual_escalation_message: str = (
        "This conversation has been escalated to the AOPR team. "
        "They will respond shortly."
    )

    # Notifications
    notification_timeout_seconds: float = 5.0
    # Per-socket send limit; keep below notification_timeout_seconds
    websocket_send_timeout_seconds: float = 2.0

    # No-response sweep (off by default; the timeout policy is owned elsewhere)
    no_response_sweep_enabled: bool = False
    no_response_sweep_interval_minutes: int = 60

    # Auth / JWT
    jwt_secret_key: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expiration_minutes: int = 1440

    # CORS / Frontend
    cors_origins: str = "http://localhost:3000"

    # General
    debug: bool = True

    model_config = {"env_file": str(_ENV_FILE), "env_file_encoding": "utf-8", "extra": "ignore"}

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list.

        In debug mode, returns ["*"] to allow any origin (LAN IPs, etc.).
        """
        if self.debug:
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    """Return cached Settings instance."""
    return Settings()
