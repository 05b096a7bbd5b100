"""Centralised configuration loaded from environment / .env file."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    """Settings are sourced from BOARDSYNC_* env vars or ``.env``."""

    model_config = SettingsConfigDict(
        env_prefix="BOARDSYNC_",
        env_file=str(_PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Server ---
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])
    debug: bool = False
    log_level: str = "INFO"

    # --- Client synchronization ---
    proposal_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="After this long a move proposal counts as an unknown outcome.",
    )
    poll_interval_seconds: float = Field(
        default=0.5,
        gt=0,
        description="How often the HTTP link polls for pushed state.",
    )


settings = Settings()
