"""Centralized configuration for rolematrix.

Uses Pydantic BaseSettings with environment variable loading and validation.
All RM_* environment variables are validated at import time.
"""

from __future__ import annotations

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    model_config = {"env_prefix": "RM_", "case_sensitive": False, "extra": "ignore"}

    # Storage
    storage: str = Field(default="memory", description="Persistence backend: memory or sqlite")
    db_path: str = Field(default="rolematrix.db", description="SQLite database path")
    catalog_path: str | None = Field(
        default=None, description="JSON catalog file with features, permissions and roles"
    )

    # Logging
    log_format: str = Field(default="text", description="Log format: text or json")
    log_level: str = Field(default="INFO", description="Python log level")

    # Preview
    limited_access_threshold: int = Field(
        default=3, ge=0, description="Warn when a role would see fewer features than this"
    )
    navigation_feature: str = Field(
        default="navigation", description="Feature id whose absence triggers a preview warning"
    )
    bulk_impact_warning_threshold: int = Field(
        default=5, ge=0, description="Warn when a bulk change affects more principals than this"
    )

    # Role data
    role_name_min_length: int = Field(default=3, ge=1)
    role_name_max_length: int = Field(default=50, ge=1)
    role_description_max_length: int = Field(default=255, ge=1)

    @field_validator("storage")
    @classmethod
    def validate_storage(cls, v: str) -> str:
        v = v.lower()
        if v not in ("memory", "sqlite"):
            msg = f"RM_STORAGE must be 'memory' or 'sqlite', got '{v}'"
            raise ValueError(msg)
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ("text", "json"):
            msg = f"RM_LOG_FORMAT must be 'text' or 'json', got '{v}'"
            raise ValueError(msg)
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        import logging

        v = v.upper()
        if not hasattr(logging, v):
            msg = f"RM_LOG_LEVEL must be a valid Python log level, got '{v}'"
            raise ValueError(msg)
        return v

    @model_validator(mode="after")
    def validate_name_bounds(self) -> Settings:
        if self.role_name_min_length > self.role_name_max_length:
            msg = "RM_ROLE_NAME_MIN_LENGTH must not exceed RM_ROLE_NAME_MAX_LENGTH"
            raise ValueError(msg)
        return self


# Singleton, validated at import time.
settings = Settings()
