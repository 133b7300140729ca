"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite:///./ridemetrics.db"

    # Logging
    LOG_FORMAT: str = "json"  # json or text
    LOG_LEVEL: str = "INFO"

    # Frontend URL for CORS
    FRONTEND_URL: str = "http://localhost:5173"

    # Athletes without an explicit timezone bucket their days in this zone
    DEFAULT_TIMEZONE: str = "UTC"

    # Training load time constants (days)
    ATL_TIME_CONSTANT: int = 7
    CTL_TIME_CONSTANT: int = 42

    # Training load intake debounce (seconds)
    TRAINING_LOAD_MIN_WAIT: float = 10.0
    TRAINING_LOAD_MAX_WAIT: float = 90.0
    TRAINING_LOAD_MAX_SIZE: int = 50
    TRAINING_LOAD_FUTURE_DAYS: int = 7

    # Base backoff applied per accumulated sync error (seconds)
    SYNC_ERROR_BACKOFF: float = 3600.0

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Create a global settings instance for direct import
settings = get_settings()
