import logging
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


logger = logging.getLogger(__name__)


PROJECT_ROOT = Path(__file__).resolve().parents[2]
ROOT_ENV = PROJECT_ROOT / ".env"
ROOT_ENV_LOCAL = PROJECT_ROOT / ".env.local"


class Settings(BaseSettings):
    """
    Curriculum Synth - Global Configuration Registry
    Centralizes all environment variables using Pydantic Settings.
    """

    model_config = SettingsConfigDict(
        env_file=(str(ROOT_ENV), str(ROOT_ENV_LOCAL)),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Infrastructure
    SUPABASE_URL: Optional[str] = Field(
        None, validation_alias=AliasChoices("SUPABASE_URL", "NEXT_PUBLIC_SUPABASE_URL")
    )
    SUPABASE_SERVICE_KEY: Optional[str] = Field(
        None, validation_alias=AliasChoices("SUPABASE_SERVICE_KEY", "SUPABASE_SERVICE_ROLE_KEY")
    )

    # AI Models & Services
    GEMINI_API_KEY: Optional[str] = None
    GROQ_API_KEY: Optional[str] = None
    GEMINI_MODEL_NAME: str = "gemini-3-pro-preview"
    GEMINI_FLASH_MODEL_NAME: str = "gemini-3-flash-preview"
    GROQ_MODEL_NAME: str = "llama-3.3-70b-versatile"

    # Runtime
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"

    # Scheduler / throughput controls
    SYNTHESIS_MAX_CONCURRENCY: int = 3
    SYNTHESIS_MAX_CHAPTER_RETRIES: int = 3
    SYNTHESIS_DRAFT_RETRY_MAX_ATTEMPTS: int = 3
    SYNTHESIS_DRAFT_RETRY_INITIAL_DELAY_SECONDS: float = 2.0
    SYNTHESIS_CALL_TIMEOUT_SECONDS: float = 180.0
    SYNTHESIS_DRAFT_TIMEOUT_SECONDS: float = 600.0

    # Pipeline feature flags
    SYNTHESIS_ENABLE_VERIFICATION: bool = True
    SYNTHESIS_ENABLE_ENRICHMENT: bool = False

    # Planning / audit
    SYNTHESIS_DEFAULT_CHAPTER_COUNT: int = 12
    SYNTHESIS_TARGET_CHAPTER_WORDS: int = 1500
    SYNTHESIS_AUDIT_EXCERPT_CHARS: int = 300
    SYNTHESIS_MIN_CHAPTERS_FOR_AUDIT: int = 2

    @field_validator("ENVIRONMENT", mode="before")
    @classmethod
    def _normalize_environment_label(cls, value: str | None) -> str:
        return str(value or "").strip().lower()

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: str | None) -> str:
        return str(value or "INFO").strip().upper()

    @model_validator(mode="after")
    def _enforce_synthesis_bounds(self) -> "Settings":
        if self.SYNTHESIS_MAX_CONCURRENCY < 1:
            logger.warning(
                "SYNTHESIS_MAX_CONCURRENCY below 1; forcing 1",
                extra={"configured": self.SYNTHESIS_MAX_CONCURRENCY},
            )
            self.SYNTHESIS_MAX_CONCURRENCY = 1
        if self.SYNTHESIS_MAX_CHAPTER_RETRIES < 1:
            logger.warning(
                "SYNTHESIS_MAX_CHAPTER_RETRIES below 1; forcing 1",
                extra={"configured": self.SYNTHESIS_MAX_CHAPTER_RETRIES},
            )
            self.SYNTHESIS_MAX_CHAPTER_RETRIES = 1
        self.SYNTHESIS_DRAFT_RETRY_MAX_ATTEMPTS = max(0, self.SYNTHESIS_DRAFT_RETRY_MAX_ATTEMPTS)
        return self


settings = Settings()  # type: ignore[call-arg]
