"""
Campus Notes – Application configuration.
Reads environment variables from a .env file via pydantic-settings.
"""

from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration loaded from environment / .env."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # ── App ──
    APP_NAME: str = "Campus Notes"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:3001"]

    # ── Database ──
    DATABASE_URL: str = "sqlite+aiosqlite:///./campusnotes.db"

    # ── JWT ──
    SECRET_KEY: str = "change-me-to-a-random-secret"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7

    # ── Chat ──
    CHAT_MAX_MESSAGE_LENGTH: int = 1000
    CHAT_EDIT_WINDOW_MINUTES: int = 15
    CHAT_PAGE_SIZE: int = 50
    CHAT_MAX_PAGE_SIZE: int = 100

    # ── Notifications ──
    NOTIFICATION_PAGE_SIZE: int = 20
    NOTIFICATION_MAX_PAGE_SIZE: int = 100


settings = Settings()
