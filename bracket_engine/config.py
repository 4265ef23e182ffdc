"""Configuration helpers for the bracket engine runtime."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

log = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def env_str(name: str, *, default: str | None = None) -> str | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


def env_bool(name: str, *, default: bool = False) -> bool:
    value = env_str(name)
    if value is None:
        return default
    lowered = value.lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    log.warning("Ignoring %s=%r; expected a yes/no flag", name, value)
    return default


def env_int(name: str, *, default: int | None = None) -> int | None:
    value = env_str(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        log.warning("Ignoring %s=%r; expected a whole number", name, value)
        return default


@dataclass(frozen=True)
class BracketSettings:
    table_name: str | None
    aws_region: str
    default_capacity: int | None
    log_level: str
    invalidate_details_on_regenerate: bool


def read_settings() -> BracketSettings:
    return BracketSettings(
        table_name=env_str("BRACKET_TABLE_NAME"),
        aws_region=env_str("AWS_REGION", default="us-east-1") or "us-east-1",
        default_capacity=env_int("BRACKET_DEFAULT_CAPACITY"),
        log_level=(env_str("BRACKET_LOG_LEVEL", default="INFO") or "INFO").upper(),
        invalidate_details_on_regenerate=env_bool(
            "BRACKET_INVALIDATE_DETAILS", default=True
        ),
    )


__all__ = ["BracketSettings", "env_bool", "env_int", "env_str", "read_settings"]
