"""
Client sync configuration.

Values come from ``SYNC_*`` environment variables (or a ``.env`` file).
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from dotenv import load_dotenv

load_dotenv()


class ClientSettings(BaseSettings):
    """Sync client settings with validation."""

    model_config = SettingsConfigDict(
        env_prefix="SYNC_",
        env_file=".env",
        extra="ignore"
    )

    # Remote endpoint
    SERVER_URL: str = Field(default="http://localhost:8000")
    TIMEOUT_S: float = Field(default=10.0, gt=0)

    # Round scheduling
    DEBOUNCE_MS: int = Field(default=100, ge=0)
    MIN_ROUND_MS: int = Field(default=500, ge=0)  # floor on a round's wall-clock duration
    INTERVAL_S: float = Field(default=300.0, ge=0)  # 0 disables the periodic timer
