"""
Activity Monitor Configuration Settings
"""
from pathlib import Path

from croniter import croniter
from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when settings are invalid. Fatal at startup."""
    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Paths (use ACTIVITY_ prefix)
    data_path: Path = Field(
        default=Path("./data"),
        alias="ACTIVITY_DATA_PATH",
        description="Directory holding activity.db and sync_health.db"
    )

    # Server
    port: int = Field(default=8000, alias="ACTIVITY_PORT")
    host: str = Field(default="0.0.0.0", alias="ACTIVITY_HOST")

    # GitHub (no prefix - standard env var names)
    github_token: str = Field(default="", alias="GITHUB_TOKEN")
    github_api_url: str = Field(
        default="https://api.github.com/graphql",
        alias="GITHUB_API_URL"
    )
    github_timeout: float = Field(default=30.0, gt=0, alias="GITHUB_TIMEOUT")

    # GitHub only serves up to one year of calendar per request
    activity_lookback_days: int = Field(
        default=365,
        ge=1,
        le=366,
        alias="ACTIVITY_LOOKBACK_DAYS",
        description="How many days of calendar to fetch per entity"
    )

    # Batching (paces requests against the GitHub rate budget)
    batch_size: int = Field(default=50, gt=0, alias="ACTIVITY_BATCH_SIZE")
    batch_delay_ms: int = Field(default=5000, ge=0, alias="ACTIVITY_BATCH_DELAY_MS")

    # Inactivity policy
    inactive_days: int = Field(
        default=30,
        gt=0,
        alias="ACTIVITY_INACTIVE_DAYS",
        description="No activity in this many days marks an entity inactive"
    )
    pending_removal_days: int = Field(
        default=60,
        gt=0,
        alias="ACTIVITY_PENDING_REMOVAL_DAYS",
        description="No activity in this many days marks an entity for removal"
    )

    # Schedules (5-field cron, evaluated in UTC)
    sync_cron: str = Field(default="0 2 * * *", alias="ACTIVITY_SYNC_CRON")
    snapshot_cron: str = Field(default="5 2 * * *", alias="ACTIVITY_SNAPSHOT_CRON")
    scheduler_enabled: bool = Field(default=True, alias="ACTIVITY_SCHEDULER_ENABLED")

    @field_validator("sync_cron", "snapshot_cron")
    @classmethod
    def _check_cron(cls, value: str) -> str:
        if not croniter.is_valid(value):
            raise ValueError(f"invalid cron expression: {value!r}")
        return value

    @model_validator(mode="after")
    def _check_window_order(self) -> "Settings":
        if self.pending_removal_days < self.inactive_days:
            raise ValueError(
                f"pending_removal_days ({self.pending_removal_days}) must be >= "
                f"inactive_days ({self.inactive_days})"
            )
        return self

    @property
    def activity_db_path(self) -> Path:
        """Path to the entity/ledger database."""
        return Path(self.data_path) / "activity.db"

    @property
    def sync_health_db_path(self) -> Path:
        """Path to the run history database."""
        return Path(self.data_path) / "sync_health.db"

    @property
    def github_enabled(self) -> bool:
        """Check if a GitHub token is configured."""
        return bool(self.github_token)


def load_settings(**overrides) -> Settings:
    """
    Build Settings, converting validation failures into ConfigurationError.

    Args:
        **overrides: Field values that take precedence over the environment

    Raises:
        ConfigurationError: If any value is missing, malformed or inconsistent
    """
    try:
        return Settings(**overrides)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'settings'}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigurationError(f"Invalid configuration: {problems}") from e


settings = load_settings()
