from __future__ import annotations

import os
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


def get_env_int(
    env_name: str,
    default_value: int,
    *,
    min_value: Optional[int] = None,
    max_value: Optional[int] = None,
) -> int:
    raw_value = os.getenv(env_name)
    if raw_value is None:
        value = default_value
    else:
        try:
            value = int(raw_value)
        except ValueError as exc:
            raise ValueError(
                f"{env_name} must be an integer, got {raw_value!r}"
            ) from exc

    if min_value is not None and value < min_value:
        raise ValueError(f"{env_name} must be >= {min_value}, got {value}")
    if max_value is not None and value > max_value:
        raise ValueError(f"{env_name} must be <= {max_value}, got {value}")
    return value


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    ttl_ms: int = Field(ge=0)
    max_items: int = Field(ge=1)
    max_memory_mb: int = Field(ge=1)
    max_value_bytes: int = Field(ge=1)
    cleanup_interval: int = Field(ge=1)
    host: str
    port: int = Field(ge=1, le=65535)
    upstream_url: str | None
    upstream_timeout: int = Field(ge=1)
    log_level: str
    log_format: str
    debug_selector: str


def load_settings() -> Settings:
    max_memory_mb = get_env_int("CACHE_MAX_MEMORY_MB", 100, min_value=1)
    max_memory_bytes = max_memory_mb * 1024 * 1024

    return Settings(
        ttl_ms=get_env_int("CACHE_TTL_MS", 60_000, min_value=0),
        max_items=get_env_int("CACHE_MAX_ITEMS", 1000, min_value=1),
        max_memory_mb=max_memory_mb,
        max_value_bytes=get_env_int(
            "CACHE_MAX_VALUE_BYTES",
            max_memory_bytes,
            min_value=1,
            max_value=max_memory_bytes,
        ),
        cleanup_interval=get_env_int("CACHE_CLEANUP_INTERVAL", 10, min_value=1),
        host=os.getenv("CACHE_HOST", "0.0.0.0"),
        port=get_env_int("CACHE_PORT", 8080, min_value=1, max_value=65535),
        upstream_url=os.getenv("CACHE_UPSTREAM_URL") or None,
        upstream_timeout=get_env_int("CACHE_UPSTREAM_TIMEOUT", 30, min_value=1),
        log_level=os.getenv("CACHE_LOG_LEVEL", "INFO").upper(),
        log_format=os.getenv("CACHE_LOG_FORMAT", "text"),
        debug_selector=os.getenv("CACHE_DEBUG", ""),
    )
