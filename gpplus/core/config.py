from enum import Enum
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class Environment(str, Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=None,
        env_file_encoding="utf-8",
        case_sensitive=True,
        use_enum_values=True,
        extra="ignore",
    )

    # Application
    APP_NAME: str = Field(default="GP Plus", description="Application name")
    APP_VERSION: str = Field(default="1.0.0", description="Application version")
    ENVIRONMENT: Environment = Field(default=Environment.DEVELOPMENT, description="Environment")

    # Logging
    LOG_LEVEL: LogLevel = Field(default=LogLevel.INFO, description="Log level")
    LOG_FORMAT: str = Field(default="text", description="Log format (json|text)")
    LOG_DIR: Optional[str] = Field(default=None, description="Directory for the rotating log file")

    # Speech recognition
    SPEECH_LANGUAGE: str = Field(default="en-GB", description="Recognizer language tag")
    PARTIAL_RESULTS: bool = Field(default=True, description="Ask the recognizer for partial results")
    VOLUME_BACKLOG_LIMIT: int = Field(
        default=8,
        description="Pending events after which volume updates are dropped",
        ge=1,
        le=1024,
    )

    # Conversation
    REPLY_DELAY_MS: int = Field(default=600, description="Simulated latency before the reply is posted", ge=0, le=60000)
    AUTO_REARM: bool = Field(default=False, description="Start listening again after every reply")

    # Monitoring
    METRICS_ENABLED: bool = Field(default=True, description="Expose Prometheus metrics")

    @field_validator("LOG_FORMAT")
    @classmethod
    def validate_log_format(cls, v):
        value = (v or "").strip().lower()
        if value not in ("json", "text"):
            raise ValueError("LOG_FORMAT must be 'json' or 'text'")
        return value

    @field_validator("SPEECH_LANGUAGE")
    @classmethod
    def validate_language(cls, v):
        value = (v or "").strip()
        if not value:
            raise ValueError("SPEECH_LANGUAGE must not be empty")
        return value

    @property
    def reply_delay_seconds(self) -> float:
        return self.REPLY_DELAY_MS / 1000.0

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == Environment.PRODUCTION


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Lazily create and cache Settings instance for DI."""
    return Settings()
