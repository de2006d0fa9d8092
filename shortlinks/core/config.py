"""Application configuration module.

This module contains settings for the short-link mapping store,
loaded from environment variables with appropriate defaults.
"""

from __future__ import annotations

import string
from typing import Optional, Any
from enum import Enum
from pathlib import Path
import logging

from pydantic import Field, field_validator, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Set up basic logger for config module
logger = logging.getLogger(__name__)

# Base directory of the project
BASE_DIR = Path(__file__).resolve().parent.parent.parent

# Hard limit imposed by the short_code column (VARCHAR(10))
SHORT_CODE_COLUMN_LENGTH = 10


class EnvironmentType(str, Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class CodeStrategy(str, Enum):
    """Short code generation strategies."""
    HASH = "hash"
    COUNTER = "counter"


class Settings(BaseSettings):
    """Application settings loaded from environment variables with defaults.

    Settings are loaded from environment variables, with fallback to
    values in .env file if present, and finally to the default values
    specified here.
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment setting
    ENVIRONMENT: EnvironmentType = EnvironmentType.DEVELOPMENT

    # App Information
    APP_NAME: str = "shortlinks"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False

    # Short code allocation
    SHORT_CODE_STRATEGY: CodeStrategy = CodeStrategy.HASH
    SHORT_CODE_ALPHABET: str = string.ascii_lowercase + string.ascii_uppercase + string.digits
    SHORT_CODE_LENGTH: int = 7  # Starting length for hash-derived codes
    SHORT_CODE_MAX_LENGTH: int = SHORT_CODE_COLUMN_LENGTH
    SHORT_CODE_MAX_ATTEMPTS: int = 10  # Insert attempts before giving up
    SHORT_CODE_ATTEMPTS_PER_LENGTH: int = 5  # Collisions tolerated before growing the code

    # PostgreSQL settings
    POSTGRES_SERVER: str = Field(default="localhost")
    POSTGRES_PORT: int = Field(default=5432)
    POSTGRES_USER: str = Field(default="postgres")
    POSTGRES_PASSWORD: str = Field(default="password")
    POSTGRES_DB: str = Field(default="shortlinks")
    DATABASE_URL: Optional[str] = None  # Full SQLAlchemy URL, overrides POSTGRES_*

    # PostgreSQL pool settings
    POSTGRES_POOL_SIZE: int = 20
    POSTGRES_POOL_MAX_OVERFLOW: int = 10
    POSTGRES_POOL_TIMEOUT: int = 30
    POSTGRES_POOL_RECYCLE: int = 300
    DB_ECHO: bool = False
    DB_RUN_MIGRATIONS_ON_STARTUP: bool = False

    # Redis settings
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_PASSWORD: str = ""
    REDIS_DB: int = 0
    REDIS_URL: Optional[str] = None  # Full Redis URL, overrides REDIS_*

    # Resolve cache settings
    CACHE_ENABLED: bool = False
    CACHE_TIMEOUT: int = 3600
    CACHE_KEY_PREFIX: str = "shortlinks:code:"

    # Logging configuration
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"
    LOG_FILENAME: str = "shortlinks.log"
    LOG_ROTATION: str = "10 MB"
    LOG_RETENTION: str = "7 days"
    LOG_FORMAT: str = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level} | {name}:{line} | {message}"
    LOG_JSON: bool = True
    LOG_TO_FILE: bool = True

    # OpenTelemetry configuration
    OTEL_ENABLED: bool = False
    OTEL_SERVICE_NAME: str = "shortlinks"
    OTEL_RESOURCE_ATTRIBUTES: str = "service.namespace=shortlinks"
    OTEL_EXPORTER_OTLP_ENDPOINT: str = "http://localhost:4317"
    OTEL_EXPORTER_OTLP_METRICS_ENDPOINT: str = "http://localhost:4317"
    OTEL_EXPORTER_OTLP_PROTOCOL: str = "grpc"  # grpc or http/protobuf
    OTEL_TRACES_SAMPLER: str = "parentbased_traceidratio"
    OTEL_TRACES_SAMPLER_ARG: float = 1.0
    OTEL_METRICS_EXPORT_INTERVAL_MILLIS: int = 60000

    # Validators
    @field_validator("SHORT_CODE_ALPHABET")
    def validate_alphabet(cls, v: str) -> str:
        """Reject alphabets that cannot encode numbers unambiguously."""
        if len(v) < 2:
            raise ValueError("SHORT_CODE_ALPHABET needs at least two characters")
        if len(set(v)) != len(v):
            raise ValueError("SHORT_CODE_ALPHABET must not contain duplicate characters")
        if not all(c.isascii() and (c.isalnum() or c in "-_") for c in v):
            raise ValueError("SHORT_CODE_ALPHABET may only use URL-safe characters (A-Z, a-z, 0-9, - and _)")
        return v

    @field_validator("SHORT_CODE_MAX_LENGTH")
    def validate_max_length(cls, v: int) -> int:
        if not 1 <= v <= SHORT_CODE_COLUMN_LENGTH:
            raise ValueError(
                f"SHORT_CODE_MAX_LENGTH must be between 1 and {SHORT_CODE_COLUMN_LENGTH}"
            )
        return v

    @field_validator("SHORT_CODE_LENGTH")
    def validate_length(cls, v: int) -> int:
        if v < 1:
            raise ValueError("SHORT_CODE_LENGTH must be positive")
        if v > SHORT_CODE_COLUMN_LENGTH:
            logger.warning(
                f"SHORT_CODE_LENGTH={v} exceeds the column size, "
                f"clamping to {SHORT_CODE_COLUMN_LENGTH}"
            )
            return SHORT_CODE_COLUMN_LENGTH
        return v

    @field_validator("SHORT_CODE_MAX_ATTEMPTS", "SHORT_CODE_ATTEMPTS_PER_LENGTH")
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("attempt counts must be positive")
        return v

    @field_validator("DATABASE_URL", "REDIS_URL", mode="before")
    def empty_url_to_none(cls, v: Any) -> Optional[str]:
        """Treat empty strings from the environment as unset."""
        if v == "":
            return None
        return v

    # Computed fields
    @computed_field
    def SQLALCHEMY_DATABASE_URI(self) -> str:
        """Construct the SQLAlchemy database URI from settings or use override."""
        if self.DATABASE_URL:
            return self.DATABASE_URL

        # Construct the URI from individual components
        return f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    @computed_field
    def REDIS_URI(self) -> str:
        """Construct the Redis URI from settings or use override."""
        if self.REDIS_URL:
            return self.REDIS_URL

        # Use empty string if no password is provided
        password_part = f":{self.REDIS_PASSWORD}@" if self.REDIS_PASSWORD else ""
        return f"redis://{password_part}{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"


# Create a singleton instance of the settings
settings = Settings()
