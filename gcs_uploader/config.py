"""Resolve uploader configuration from environment and explicit overrides."""

from __future__ import annotations

import os
from typing import Any

from pydantic import BaseModel, field_validator

from gcs_uploader.const import (
    API_URL,
    BACKOFF_BASE_SECONDS,
    DEFAULT_CHUNK_SIZE,
    MAX_BACKOFF_SECONDS,
    MAX_RETRIES,
    MINIMUM_CHUNK_SIZE,
    REQUEST_TIMEOUT_SECONDS,
    STATUS_TIMEOUT_SECONDS,
)

_ENV_MAP: dict[str, str] = {
    "api_url": "GCS_UPLOADER_API_URL",
    "access_token": "GCS_UPLOADER_ACCESS_TOKEN",
    "default_chunk_size": "GCS_UPLOADER_CHUNK_SIZE",
    "max_retries": "GCS_UPLOADER_MAX_RETRIES",
}

_UNIT_MULTIPLIERS: dict[str, int] = {
    "b": 1,
    "k": 1024,
    "kb": 1024,
    "kib": 1024,
    "m": 1024**2,
    "mb": 1024**2,
    "mib": 1024**2,
    "g": 1024**3,
    "gb": 1024**3,
    "gib": 1024**3,
}


class UploaderConfig(BaseModel):
    """Configuration for an upload client.

    Attributes:
        api_url: Base URL of the object store.
        access_token: OAuth2 bearer token sent with every request, if any.
        default_chunk_size: Chunk size used when options do not set one.
        max_retries: Retry ceiling for initiation and offset queries.
        backoff_base_seconds: First backoff delay; doubles on every attempt.
        max_backoff_seconds: Upper bound for a single backoff delay.
        request_timeout_seconds: Timeout for initiation and chunk requests.
        status_timeout_seconds: Timeout for offset queries and aborts.
    """

    api_url: str = API_URL
    access_token: str | None = None
    default_chunk_size: int = DEFAULT_CHUNK_SIZE
    max_retries: int = MAX_RETRIES
    backoff_base_seconds: float = BACKOFF_BASE_SECONDS
    max_backoff_seconds: float = MAX_BACKOFF_SECONDS
    request_timeout_seconds: float = REQUEST_TIMEOUT_SECONDS
    status_timeout_seconds: float = STATUS_TIMEOUT_SECONDS

    @field_validator("default_chunk_size")
    @classmethod
    def _check_chunk_size(cls, value: int) -> int:
        if value < MINIMUM_CHUNK_SIZE or value % MINIMUM_CHUNK_SIZE != 0:
            raise ValueError(
                f"default_chunk_size {value} is not a positive multiple of "
                f"{MINIMUM_CHUNK_SIZE}"
            )
        return value

    @field_validator("max_retries")
    @classmethod
    def _check_max_retries(cls, value: int) -> int:
        if value < 1:
            raise ValueError(f"max_retries must be at least 1, got {value}")
        return value

    @field_validator("api_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    def auth_headers(self) -> dict[str, str]:
        """Return the authorization headers for this configuration."""
        if not self.access_token:
            return {}
        return {"Authorization": f"Bearer {self.access_token}"}


def parse_bytes(value: int | str) -> int:
    """Parse a byte quantity from an integer or unit-suffixed string.

    Supported string units (case-insensitive):
        b, k, kb, kib, m, mb, mib, g, gb, gib

    Args:
        value: Raw byte value as an ``int`` or string with an optional unit
            suffix.

    Returns:
        The parsed value in bytes.

    Raises:
        ValueError: If the input cannot be parsed or contains an unknown unit.
    """
    if isinstance(value, int):
        return value

    normalized_value = str(value).strip().lower()

    if normalized_value.isdigit():
        return int(normalized_value)

    numeric_part = ""
    unit_suffix = ""
    for character in normalized_value:
        if character.isdigit() and not unit_suffix:
            numeric_part += character
        else:
            unit_suffix += character

    if not numeric_part or not unit_suffix:
        raise ValueError(f"Invalid byte value: {value!r}")

    multiplier = _UNIT_MULTIPLIERS.get(unit_suffix.strip())
    if multiplier is None:
        raise ValueError(f"Unknown byte unit in value: {value!r}")

    return int(numeric_part) * multiplier


def _read_env_overrides() -> dict[str, Any]:
    """Read configuration overrides from environment variables.

    Values that cannot be parsed are skipped.

    Returns:
        A dictionary of configuration field names to override values.
    """
    overrides: dict[str, Any] = {}

    for field_name, env_var_name in _ENV_MAP.items():
        env_value = os.getenv(env_var_name)
        if env_value is None:
            continue

        if field_name == "default_chunk_size":
            try:
                overrides[field_name] = parse_bytes(env_value)
            except ValueError:
                continue
        elif field_name == "max_retries":
            try:
                overrides[field_name] = int(env_value)
            except ValueError:
                continue
        else:
            overrides[field_name] = env_value

    return overrides


def resolve_config(overrides: dict[str, Any] | None = None) -> UploaderConfig:
    """Resolve the effective uploader configuration.

    Defaults are layered under environment variables, which are layered
    under ``overrides``.

    Args:
        overrides: Optional explicit configuration values.

    Returns:
        The validated ``UploaderConfig``.

    Raises:
        pydantic.ValidationError: If a resolved value is invalid.
    """
    merged = _read_env_overrides()
    if overrides:
        merged.update(overrides)
    return UploaderConfig(**merged)
