"""Configuration management for NoteTaker."""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Config(BaseSettings):
    """Application configuration loaded from environment variables.

    User-facing preferences (languages, theme, API key) are not configured
    here; they live in the stored ``UserSettings`` record.
    """

    model_config = SettingsConfigDict(
        env_prefix="NOTETAKER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage
    database_path: Path = Field(
        default=Path("data/notetaker.db"),
        description="Path to SQLite database file",
    )

    # Pipelines
    save_debounce_seconds: float = Field(
        default=1.5,
        ge=0.0,
        le=30.0,
        description="Quiet period before an edit is written to the store",
    )
    enrichment_debounce_seconds: float = Field(
        default=3.0,
        ge=0.0,
        le=120.0,
        description="Quiet period after a write before a note is sent for enrichment",
    )

    # Gemini
    gemini_model: str = Field(
        default="gemini-2.5-flash",
        description="Gemini model used for enrichment and AI actions",
    )

    # Diagnostics
    error_log_path: Path = Field(
        default=Path("data/notetaker-errors.log"),
        description="File receiving full tracebacks of CLI errors",
    )
    verbose: bool = Field(default=False, description="Enable debug logging")

    @property
    def database_url(self) -> str:
        """SQLAlchemy async database URL."""
        return f"sqlite+aiosqlite:///{self.database_path}"


@lru_cache
def get_config() -> Config:
    """Get cached configuration instance."""
    return Config()
