from __future__ import annotations

import json
import os
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from vetintel.logging import get_logger

logger = get_logger(__name__)


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the query gateway."""

    # Identity provider / backend-as-a-service
    supabase_url: str = env_field("http://localhost:54321", "SUPABASE_URL")
    supabase_anon_key: str | None = env_field(None, "SUPABASE_ANON_KEY")
    identity_timeout_seconds: float = env_field(10.0, "IDENTITY_TIMEOUT_SECONDS")
    audit_timeout_seconds: float = env_field(
        5.0,
        "AUDIT_TIMEOUT_SECONDS",
        description="Upper bound on a single audit write; slower writes are dropped",
    )
    # Upstream generative AI service
    gemini_api_key: str | None = env_field(None, "GOOGLE_GEMINI_API_KEY")
    gemini_base_url: str = env_field(
        "https://generativelanguage.googleapis.com/v1beta", "GEMINI_BASE_URL"
    )
    gemini_model: str = env_field("gemini-pro", "GEMINI_MODEL")
    upstream_timeout_seconds: float = env_field(30.0, "UPSTREAM_TIMEOUT_SECONDS")
    # Rate limit record store
    redis_url: str | None = env_field("redis://localhost:6379/0", "REDIS_URL")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    allow_redis_fallback_dev: bool = env_field(False, "ALLOW_REDIS_FALLBACK_DEV")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Allow in-process stores and runtime resets for tests",
    )
    rate_limit_endpoint: str = env_field("vet-search", "RATE_LIMIT_ENDPOINT")
    rate_limit_max_requests: int = env_field(10, "RATE_LIMIT_MAX_REQUESTS")
    rate_limit_window_seconds: int = env_field(60, "RATE_LIMIT_WINDOW_SECONDS")
    # Request validation
    max_query_length: int = env_field(500, "MAX_QUERY_LENGTH")
    # HTTP surface
    cors_allow_origins: list[str] = env_field(["*"], "CORS_ALLOW_ORIGINS")
    build_sha: str = env_field("dev", "BUILD_SHA")

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

    @field_validator("supabase_url", "gemini_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("supabase_anon_key", "gemini_api_key", "redis_url")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _parse_origins(cls, value: Any) -> Any:
        # Accept JSON arrays or comma separated strings from the environment
        if isinstance(value, str):
            stripped = value.strip()
            if stripped.startswith("["):
                return json.loads(stripped)
            return [item.strip() for item in stripped.split(",") if item.strip()]
        return value

    @field_validator("max_query_length")
    @classmethod
    def _positive_length(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("MAX_QUERY_LENGTH must be positive")
        return value


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
