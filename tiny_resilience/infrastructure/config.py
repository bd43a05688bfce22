from __future__ import annotations

import os
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from tiny_resilience.domain.constraints import (
    DEFAULT_BASE_DELAY_MS,
    DEFAULT_MAX_DELAY_MS,
    DEFAULT_MAX_RETRIES,
    DEFAULT_MAX_STORAGE_BYTES,
)

DEFAULT_STORAGE_PATH = str(Path.home() / ".tiny_resilience")


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


def get_env_float(env_name: str, default_value: float, *, min_value: Optional[float] = None) -> float:
    raw_value = os.getenv(env_name)
    if raw_value is None:
        value = default_value
    else:
        try:
            value = float(raw_value)
        except ValueError as exc:
            raise ValueError(f"{env_name} must be a number, got {raw_value!r}") from exc

    if min_value is not None and value < min_value:
        raise ValueError(f"{env_name} must be >= {min_value}, got {value}")
    return value


def get_env_bool(env_name: str, default_value: bool) -> bool:
    raw_value = os.getenv(env_name)
    if raw_value is None:
        return default_value

    normalized = raw_value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False

    raise ValueError(f"{env_name} must be a boolean, got {raw_value!r}")


def get_env_choice(env_name: str, default_value: str, choices: tuple[str, ...]) -> str:
    value = os.getenv(env_name, default_value).strip().lower()
    if value not in choices:
        raise ValueError(f"{env_name} must be one of {', '.join(choices)}, got {value!r}")
    return value


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_storage_bytes: int = Field(default=DEFAULT_MAX_STORAGE_BYTES, ge=1)
    backend: Literal["file", "sqlite", "memory"] = "file"
    storage_path: str = DEFAULT_STORAGE_PATH
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=0)
    base_delay_ms: int = Field(default=DEFAULT_BASE_DELAY_MS, ge=1)
    max_delay_ms: int = Field(default=DEFAULT_MAX_DELAY_MS, ge=1)
    base_url: str = ""
    timeout_seconds: float = Field(default=30.0, gt=0)
    log_level: str = "INFO"
    log_format: str = "text"
    log_requests: bool = False

    @model_validator(mode="after")
    def _check_delays(self) -> "Settings":
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError(
                f"max_delay_ms ({self.max_delay_ms}) must be >= base_delay_ms ({self.base_delay_ms})"
            )
        return self


def load_settings() -> Settings:
    return Settings(
        max_storage_bytes=get_env_int("CACHE_MAX_STORAGE_BYTES", DEFAULT_MAX_STORAGE_BYTES, min_value=1),
        backend=get_env_choice("CACHE_BACKEND", "file", ("file", "sqlite", "memory")),
        storage_path=os.getenv("CACHE_STORAGE_PATH", DEFAULT_STORAGE_PATH),
        max_retries=get_env_int("FETCH_MAX_RETRIES", DEFAULT_MAX_RETRIES, min_value=0),
        base_delay_ms=get_env_int("FETCH_BASE_DELAY_MS", DEFAULT_BASE_DELAY_MS, min_value=1),
        max_delay_ms=get_env_int("FETCH_MAX_DELAY_MS", DEFAULT_MAX_DELAY_MS, min_value=1),
        base_url=os.getenv("FETCH_BASE_URL", ""),
        timeout_seconds=get_env_float("FETCH_TIMEOUT_SECONDS", 30.0, min_value=0.001),
        log_level=os.getenv("RESILIENCE_LOG_LEVEL", "INFO").upper(),
        log_format=os.getenv("RESILIENCE_LOG_FORMAT", "text"),
        log_requests=get_env_bool("RESILIENCE_LOG_REQUESTS", False),
    )
