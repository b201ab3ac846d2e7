import os
from pathlib import Path

from loguru import logger
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_database_url() -> str:
    """Get the job-store database URL.

    Falls back to a local SQLite file next to the project root so the CLI works
    without any configuration. Set DATABASE_URL to a PostgreSQL URL in production.
    """
    db_url = os.getenv("DATABASE_URL", "")
    if db_url:
        return db_url

    db_path = Path(__file__).parent.parent.parent / "plangen_jobs.db"
    return f"sqlite:///{db_path.resolve()}"


class Settings(BaseSettings):
    openai_api_key: str = Field(default="", validation_alias="OPENAI_API_KEY")
    openai_model: str = Field(default="gpt-4o", validation_alias="OPENAI_MODEL")
    llm_temperature: float = Field(default=0.5, validation_alias="LLM_TEMPERATURE")
    llm_timeout_seconds: float = Field(default=240.0, validation_alias="LLM_TIMEOUT_SECONDS")
    structure_max_tokens: int = Field(default=4000, validation_alias="STRUCTURE_MAX_TOKENS")
    workout_max_tokens: int = Field(default=8000, validation_alias="WORKOUT_MAX_TOKENS")

    # Rate-limit backoff only; every other provider error fails immediately
    llm_max_attempts: int = Field(default=4, validation_alias="LLM_MAX_ATTEMPTS")
    llm_backoff_base_seconds: float = Field(default=2.0, validation_alias="LLM_BACKOFF_BASE_SECONDS")
    llm_backoff_max_seconds: float = Field(default=30.0, validation_alias="LLM_BACKOFF_MAX_SECONDS")

    job_stuck_threshold_seconds: int = Field(default=5 * 60, validation_alias="JOB_STUCK_THRESHOLD_SECONDS")
    plan_weeks: int = Field(default=6, validation_alias="PLAN_WEEKS")

    database_url: str = Field(default_factory=get_database_url, validation_alias="DATABASE_URL")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Validate log level is a valid loguru level."""
        valid_levels = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}
        upper_value = value.upper()
        if upper_value not in valid_levels:
            logger.warning(f"Invalid LOG_LEVEL '{value}'. Valid levels are: {', '.join(sorted(valid_levels))}. Defaulting to INFO.")
            return "INFO"
        return upper_value

    @field_validator("llm_max_attempts", "plan_weeks")
    @classmethod
    def validate_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @field_validator("openai_api_key")
    @classmethod
    def warn_missing_api_key(cls, value: str) -> str:
        """Allow an empty key for offline use (tests, the repair CLI) but say so."""
        if not value:
            logger.debug("OPENAI_API_KEY is not set; model calls will fail until it is configured")
        return value


settings = Settings()
