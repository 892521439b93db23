"""
Configuration module - loads all env vars using pydantic-settings.
This is the SINGLE SOURCE OF TRUTH for all config values.
"""

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # MongoDB
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_db: str = "assessment_engine"

    # JWT Auth (tokens are issued by the identity service, we only verify)
    jwt_secret_key: str = "change-this-secret"
    jwt_algorithm: str = "HS256"

    # Assessment defaults
    default_passing_score: float = 60.0
    default_tab_switch_limit: int = 3
    default_quiz_duration: int = 15  # minutes
    submission_grace_seconds: int = 30

    # Leaderboard pagination
    leaderboard_page_size: int = 50
    leaderboard_max_page_size: int = 200

    # Event listing pagination
    event_page_size: int = 9
    event_max_page_size: int = 100

    # Compare-and-swap retries per operation
    max_write_retries: int = 5

    # App
    log_level: str = "INFO"
    debug: bool = False

    # Pydantic v2 config
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8"
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
