"""Service configuration.

Values come from the process environment and an optional ``.env`` file.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from common.errors import ConfigurationError


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # Analysis engine
    analysis_engine_url: str = Field(default="http://localhost:8000")

    # Engine calls must time out before the poll-time staleness check fires.
    engine_call_timeout_minutes: float = Field(default=55.0, gt=0)
    job_stale_after_minutes: float = Field(default=60.0, gt=0)
    error_message_max_chars: int = Field(default=500, gt=0)

    # Review comments
    comment_batch_lease_seconds: int = Field(default=900, gt=0)

    # Persistence
    store_backend: Literal["firestore", "memory"] = Field(default="firestore")
    service_file_loc: str = Field(default="")

    # Identity
    auth_enabled: bool = Field(default=True)
    dev_user_id: str = Field(default="dev-user")

    # Misc
    log_level: str = Field(default="INFO")
    cors_origins: str = Field(default="*")
    github_base_url: Optional[str] = Field(default=None)

    @model_validator(mode="after")
    def check_timeouts(self) -> "Settings":
        if self.engine_call_timeout_minutes >= self.job_stale_after_minutes:
            raise ConfigurationError(
                "engine_call_timeout_minutes "
                f"({self.engine_call_timeout_minutes}) must be below "
                f"job_stale_after_minutes ({self.job_stale_after_minutes})"
            )
        return self

    @property
    def engine_call_timeout_seconds(self) -> float:
        return self.engine_call_timeout_minutes * 60

    @property
    def job_stale_after_seconds(self) -> float:
        return self.job_stale_after_minutes * 60

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()
