"""
Configuration settings for the task review bot core.
All sensitive values are loaded from environment variables.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    app_name: str = "Task Review Bot"
    debug: bool = False
    environment: str = "production"

    # Database (PostgreSQL)
    database_url: str = ""
    database_echo: bool = False
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_pool_recycle: int = 1800

    # Deadlines are computed in this timezone
    timezone: str = "Europe/Moscow"

    # Tasks
    task_list_limit: int = 20

    # Invites (0 = never expire)
    invite_ttl_hours: int = 0


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get the application settings."""
    return settings
