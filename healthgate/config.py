"""
Configuration management with environment variable support and validation.

Design principles:
- Environment-specific configs (dev, staging, prod)
- Validation at startup (fail fast)
- Type safety with Pydantic
- Secure defaults (nothing sensitive is configured here)
"""

import os
from functools import lru_cache
from typing import Literal, cast

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

# Load environment variables from .env file
load_dotenv()

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class StorageConfig(BaseModel):
    """Where preferences, profile layouts and the identity session are kept."""

    backend: Literal["memory", "json_file"] = Field(
        default="json_file", description="Key/value storage implementation"
    )
    path: str = Field(
        default="./data/healthgate.json", description="Document path for the json_file backend"
    )

    @field_validator("path")
    def validate_path(cls, v):
        if not v.strip():
            raise ValueError("storage path must not be empty")
        return v


class BiometricConfig(BaseModel):
    """Biometric challenge behaviour."""

    evaluation_timeout_seconds: float | None = Field(
        default=60.0,
        gt=0.0,
        description="Upper bound for a single challenge; None leaves it to the platform",
    )
    enroll_reason: str = Field(
        default="Enable {label} to quickly and securely access your account",
        description="Prompt shown while enrolling; {label} is the modality name",
    )
    login_reason: str = Field(
        default="Use {label} to sign in to your account",
        description="Prompt shown for biometric sign-in; {label} is the modality name",
    )


class AuthConfig(BaseModel):
    """Credential rules and identity provider call limits."""

    min_password_length: int = Field(default=6, ge=1, description="Minimum sign-up password length")
    request_timeout_seconds: float = Field(
        default=15.0, gt=0.0, description="Timeout for identity provider calls"
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: LogLevel = Field(default="INFO", description="Logging level")
    format: Literal["json", "console"] = Field(default="json", description="Logging format")


class AppConfig(BaseModel):
    """Main application configuration combining all subsystems."""

    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    storage: StorageConfig = Field(default_factory=StorageConfig)
    biometric: BiometricConfig = Field(default_factory=BiometricConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def debug_only_in_dev(self) -> "AppConfig":
        """Ensure debug mode is only allowed in development environment."""
        if self.debug and self.environment != "development":
            raise ValueError("debug mode is only allowed in development environment")
        return self


def load_config_from_env() -> AppConfig:
    """Load configuration from environment variables with validation."""

    def _env_to_literal(val: str) -> Literal["development", "staging", "production"]:
        v = val.strip().lower()
        if v in {"dev", "development"}:
            return "development"
        if v in {"stage", "staging"}:
            return "staging"
        return "production"

    def _level_to_literal(val: str) -> LogLevel:
        v = val.strip().upper()
        return cast(LogLevel, v if v in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"} else "INFO")

    def _backend_to_literal(val: str) -> Literal["memory", "json_file"]:
        v = val.strip().lower()
        return "memory" if v in {"memory", "mem", "inmemory"} else "json_file"

    def _optional_float(val: str | None, default: float | None) -> float | None:
        if val is None:
            return default
        if val.strip().lower() in {"", "none", "platform"}:
            return None
        return float(val)

    environment = _env_to_literal(os.getenv("ENVIRONMENT", "development"))
    debug = environment == "development"

    storage_config = StorageConfig(
        backend=_backend_to_literal(os.getenv("STORAGE_BACKEND", "json_file")),
        path=os.getenv("STORAGE_PATH", "./data/healthgate.json"),
    )

    biometric_config = BiometricConfig(
        evaluation_timeout_seconds=_optional_float(os.getenv("BIOMETRIC_TIMEOUT_SECONDS"), 60.0),
    )

    auth_config = AuthConfig(
        min_password_length=int(os.getenv("AUTH_MIN_PASSWORD_LENGTH", "6")),
        request_timeout_seconds=float(os.getenv("AUTH_TIMEOUT_SECONDS", "15.0")),
    )

    logging_config = LoggingConfig(
        level=_level_to_literal(os.getenv("LOG_LEVEL", "INFO")),
        format="console" if debug else "json",
    )

    return AppConfig(
        environment=environment,
        debug=debug,
        storage=storage_config,
        biometric=biometric_config,
        auth=auth_config,
        logging=logging_config,
    )


@lru_cache
def get_config() -> AppConfig:
    """Get cached application configuration."""
    return load_config_from_env()


def validate_config() -> AppConfig:
    """Validate configuration at startup. Raises on invalid settings."""
    from healthgate.services.common import logger

    try:
        config = get_config()
    except Exception as e:
        logger.error("configuration_invalid", error=str(e))
        raise

    logger.info(
        "configuration_loaded",
        environment=config.environment,
        storage_backend=config.storage.backend,
        log_level=config.logging.level,
    )
    return config
