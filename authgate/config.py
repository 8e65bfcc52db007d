from __future__ import annotations

import os
import secrets
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from authgate.logging import get_logger

logger = get_logger(__name__)

# Minimum length accepted for an operator-supplied SESSION_SECRET
MIN_SESSION_SECRET_LENGTH = 16


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the auth service."""

    app_env: str = env_field("development", "APP_ENV")
    port: int = env_field(3000, "PORT")
    database_url: str = env_field(
        "postgresql://localhost:5432/authgate", "DATABASE_URL"
    )
    db_pool_min_size: int = env_field(1, "DB_POOL_MIN_SIZE")
    db_pool_max_size: int = env_field(10, "DB_POOL_MAX_SIZE")
    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    allow_redis_fallback_dev: bool = env_field(False, "ALLOW_REDIS_FALLBACK_DEV")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Allow runtime resets and an ephemeral session secret.",
    )
    session_secret: str | None = env_field(
        None,
        "SESSION_SECRET",
        description="HMAC key used to sign the session cookie",
    )
    session_cookie_name: str = env_field("SESSION", "SESSION_COOKIE_NAME")
    session_cookie_domain: str | None = env_field(
        None,
        "SESSION_COOKIE_DOMAIN",
        description="Parent domain the session cookie is scoped to, e.g. .example.com",
    )
    session_cookie_secure: bool = env_field(True, "SESSION_COOKIE_SECURE")
    session_key_prefix: str = env_field(
        "authgate:",
        "SESSION_KEY_PREFIX",
        description="Namespace for session records in the shared store",
    )
    session_ttl_seconds: int = env_field(60 * 60 * 24, "SESSION_TTL_SECONDS")
    session_rotate_on_login: bool = env_field(
        False,
        "SESSION_ROTATE_ON_LOGIN",
        description="Issue a fresh session key on login instead of reusing the caller's cookie session",
    )
    cors_allow_origins: list[str] = env_field([], "CORS_ALLOW_ORIGINS")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("session_cookie_domain", mode="before")
    @classmethod
    def _blank_domain_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("session_ttl_seconds")
    @classmethod
    def _validate_ttl(cls, value: int) -> int:
        if value < 1:
            raise ValueError("SESSION_TTL_SECONDS must be at least 1")
        return value

    @model_validator(mode="after")
    def _ensure_session_secret(self) -> "Settings":
        if self.session_secret:
            if len(self.session_secret) < MIN_SESSION_SECRET_LENGTH:
                raise ValueError(
                    f"SESSION_SECRET must be at least {MIN_SESSION_SECRET_LENGTH} characters"
                )
            return self
        if not self.test_mode:
            raise ValueError("SESSION_SECRET is required unless TEST_MODE is enabled")
        # Cookies signed with this secret do not survive a restart
        logger.warning("session_secret_generated", reason="SESSION_SECRET not set")
        self.session_secret = secrets.token_urlsafe(48)
        return self


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
