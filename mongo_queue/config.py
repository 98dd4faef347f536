"""
Centralized Configuration System
Environment-aware settings for queue connections and tuning.
"""
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Literal


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="allow"
    )
    """
    Queue configuration.
    Loads from environment variables with sensible defaults.
    """

    # ============================================
    # MONGODB CONNECTION
    # ============================================
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_database: str = "mongo_queue"
    mongodb_max_pool_size: int = 50
    mongodb_min_pool_size: int = 5
    mongodb_server_selection_timeout_ms: int = 5000

    # ============================================
    # QUEUE TUNING
    # ============================================
    # Upper bound on dead messages skipped by a single get() call
    queue_get_recursion_limit: int = Field(default=500, ge=0)

    # ============================================
    # LOGGING
    # ============================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    enable_structured_logging: bool = False  # Set to True for production JSON logs

    # ============================================
    # ENVIRONMENT
    # ============================================
    environment: Literal["development", "staging", "production"] = "development"


@lru_cache()
def get_settings() -> Settings:
    """
    Singleton pattern for settings.
    Uses LRU cache to ensure only one Settings instance exists.
    """
    return Settings()
