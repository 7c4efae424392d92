"""Configuration management for famsplit."""

from decimal import Decimal
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="FAMSPLIT_",
        case_sensitive=False,
        extra="ignore",
    )

    # Local identity (who the CLI acts as)
    user_id: str | None = None
    user_name: str | None = None
    user_email: str | None = None

    # Hosted identity provider
    firebase_api_key: str | None = None
    firebase_id_token: str | None = None

    # Money settings
    currency: str = "USD"
    split_tolerance: Decimal = Decimal("0.01")  # Accepted slack when parsing input

    # Logging
    log_level: str = "INFO"

    # Database path
    database_path: Path = Path.home() / ".famsplit" / "famsplit.db"

    def __init__(self, **kwargs):
        """Initialize settings and create database directory if needed."""
        super().__init__(**kwargs)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)


def load_settings(**overrides) -> Settings:
    """Load application settings from environment variables (plus overrides)."""
    try:
        return Settings(**overrides)
    except Exception as e:
        raise ValueError(
            f"Failed to load settings. Make sure your .env file or FAMSPLIT_* "
            f"environment variables are valid.\n"
            f"Error: {e}"
        ) from e
