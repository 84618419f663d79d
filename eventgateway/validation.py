"""Validation engine for candidate events.

Checks run in a fixed order and stop at the first failure, so the same bad draft
always produces the same error:

1. top-level presence
2. enum membership
3. nested required fields
4. timestamp parseability and bounds
"""

from datetime import datetime, timedelta
from enum import Enum

from eventgateway.config import settings
from eventgateway.errors import BatchSizeError, ValidationError
from eventgateway.models.event import ContentType, EventSource, EventType, Platform
from eventgateway.timestamps import parse_timestamp, utcnow

REQUIRED_FIELDS = ("type", "platform", "actor", "subject", "metrics", "metadata", "timestamp")

VALID_EVENT_TYPES = tuple(t.value for t in EventType)
VALID_PLATFORMS = tuple(p.value for p in Platform)
VALID_CONTENT_TYPES = tuple(c.value for c in ContentType)
VALID_SOURCES = tuple(s.value for s in EventSource)

# (path, allowed values, label used in the message)
_ENUM_CHECKS = (
    (("type",), VALID_EVENT_TYPES, "event type"),
    (("platform",), VALID_PLATFORMS, "platform"),
    (("subject", "content_type"), VALID_CONTENT_TYPES, "content_type"),
    (("metadata", "source"), VALID_SOURCES, "source"),
)

_NESTED_REQUIRED = (
    ("actor", "platform_user_id"),
    ("actor", "username"),
    ("subject", "content_id"),
    ("subject", "content_type"),
    ("subject", "owner_platform_id"),
)


def _missing(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _lookup(draft: dict, path: tuple[str, ...]):
    value = draft
    for key in path:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


def check_required(draft) -> None:
    """Presence of the seven top-level fields. Also the batch pre-filter."""
    if not isinstance(draft, dict):
        raise ValidationError("Event must be a JSON object")
    for field in REQUIRED_FIELDS:
        if _missing(draft.get(field)):
            raise ValidationError(f"{field} is required", field=field)


def _check_enums(draft: dict) -> None:
    for path, allowed, label in _ENUM_CHECKS:
        value = _lookup(draft, path)
        if value is None:
            # absent nested enums are reported by the nested presence check
            continue
        if isinstance(value, Enum):
            value = value.value
        if value not in allowed:
            raise ValidationError(
                f"Invalid {label}. Must be one of: {', '.join(allowed)}",
                field=".".join(path),
            )


def _check_nested(draft: dict) -> None:
    for parent in ("actor", "subject", "metrics", "metadata"):
        if not isinstance(draft[parent], dict):
            raise ValidationError(f"{parent} must be an object", field=parent)

    for path in _NESTED_REQUIRED:
        if _missing(_lookup(draft, path)):
            raise ValidationError(f"{'.'.join(path)} is required", field=".".join(path))

    count = draft["metrics"].get("count")
    if isinstance(count, bool) or not isinstance(count, (int, float)):
        raise ValidationError("metrics.count must be a number", field="metrics.count")
    if count < 0:
        raise ValidationError("metrics.count cannot be negative", field="metrics.count")

    if _missing(draft["metadata"].get("source")):
        raise ValidationError("metadata.source is required", field="metadata.source")


def _check_timestamp(draft: dict, now: datetime, max_age_days: int) -> datetime:
    try:
        timestamp = parse_timestamp(draft["timestamp"])
    except ValueError:
        raise ValidationError("Invalid timestamp format. Must be ISO8601", field="timestamp")

    if timestamp > now:
        raise ValidationError("Timestamp cannot be in the future", field="timestamp")
    if timestamp < now - timedelta(days=max_age_days):
        raise ValidationError("Timestamp cannot be older than 1 year", field="timestamp")
    return timestamp


def validate(draft, now: datetime | None = None, max_age_days: int | None = None) -> dict:
    """Validate a draft event.

    Returns a shallow copy of the draft with ``timestamp`` parsed to an aware
    datetime. Raises ValidationError with the failing field path otherwise.
    """
    now = now or utcnow()
    max_age_days = settings.max_event_age_days if max_age_days is None else max_age_days

    check_required(draft)
    _check_enums(draft)
    _check_nested(draft)
    timestamp = _check_timestamp(draft, now, max_age_days)

    return {**draft, "timestamp": timestamp}


def check_batch_size(items, max_size: int | None = None) -> None:
    max_size = settings.batch_max_size if max_size is None else max_size
    if not isinstance(items, list):
        raise BatchSizeError("events must be an array", field="events")
    if not items:
        raise BatchSizeError("events array cannot be empty", field="events")
    if len(items) > max_size:
        raise BatchSizeError(
            f"Cannot process more than {max_size} events at once", field="events"
        )
