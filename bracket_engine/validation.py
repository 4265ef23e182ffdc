from __future__ import annotations

import re
from datetime import UTC, datetime

from .errors import InvalidValueError
from .models import ISO_FORMAT

_MATCH_ID_PATTERN = re.compile(r"^\d+$")


def parse_match_id(raw: object) -> int:
    if isinstance(raw, bool):
        raise InvalidValueError(f"Invalid match id: {raw}")
    if isinstance(raw, int):
        match_id = raw
    else:
        value = str(raw or "").strip()
        if not _MATCH_ID_PATTERN.match(value):
            raise InvalidValueError(f"Invalid match id: {raw}")
        match_id = int(value)
    if match_id < 1:
        raise InvalidValueError("Match id must be a positive number")
    return match_id


def normalize_event_id(raw: object) -> str:
    value = str(raw if raw is not None else "").strip()
    if not value:
        raise InvalidValueError("Event id cannot be empty")
    if "#" in value:
        raise InvalidValueError(f"Invalid event id: {value}")
    return value


def normalize_participant_id(raw: object) -> str:
    value = str(raw if raw is not None else "").strip()
    if not value:
        raise InvalidValueError("Participant id cannot be empty")
    return value


def parse_slot_position(raw: object) -> int:
    """Map a 1-based slot number to the internal 0/1 index."""
    value = str(raw if raw is not None else "").strip()
    if isinstance(raw, bool) or value not in {"1", "2"}:
        raise InvalidValueError(f"Slot position must be 1 or 2: {raw}")
    return int(value) - 1


def parse_capacity(raw: object) -> int | None:
    """Return a bracket capacity, or None when no limit is configured."""
    if raw is None or raw == "":
        return None
    try:
        capacity = int(raw)  # type: ignore[call-overload]
    except (TypeError, ValueError) as exc:
        raise InvalidValueError(f"Capacity must be a number: {raw}") from exc
    if capacity <= 0:
        return None
    if capacity > 1024:
        raise InvalidValueError("Capacity above 1024 entrants is not supported")
    return capacity


def parse_schedule_datetime(raw: str | None) -> str | None:
    """Normalize an ISO date/time into the stored UTC format."""
    if raw is None:
        return None
    value = raw.strip()
    if not value:
        return None

    normalized = value.replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError as exc:
        raise InvalidValueError(
            "Use ISO format such as 2024-05-01T18:00 or 2024-05-01 18:00"
        ) from exc

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    else:
        parsed = parsed.astimezone(UTC)
    return parsed.strftime(ISO_FORMAT)


def clean_optional_text(raw: str | None, *, field: str, limit: int = 500) -> str | None:
    if raw is None:
        return None
    value = raw.strip()
    if not value:
        return None
    if len(value) > limit:
        raise InvalidValueError(f"{field} must be {limit} characters or fewer")
    return value


__all__ = [
    "clean_optional_text",
    "normalize_event_id",
    "normalize_participant_id",
    "parse_capacity",
    "parse_match_id",
    "parse_schedule_datetime",
    "parse_slot_position",
]
