"""Timestamp parsing for the encodings platforms actually send."""

import re
from datetime import datetime, timezone

# Anything above this is treated as milliseconds (≈ year 5138 in seconds)
_MS_THRESHOLD = 10**11

_NUMERIC = re.compile(r"^-?\d+(\.\d+)?$")

_FALLBACK_FORMATS = (
    "%a %b %d %H:%M:%S %z %Y",  # Twitter v1.1 created_at
    "%Y-%m-%dT%H:%M:%S%z",      # Graph API, e.g. 2024-05-01T10:00:00+0000
    "%Y-%m-%dT%H:%M:%S.%f%z",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _from_epoch(value: float) -> datetime:
    if abs(value) > _MS_THRESHOLD:
        value = value / 1000
    try:
        return datetime.fromtimestamp(value, tz=timezone.utc)
    except (OverflowError, OSError) as e:
        raise ValueError(f"epoch value out of range: {value}") from e


def parse_timestamp(value) -> datetime:
    """Parse ISO-8601 strings, Unix seconds or Unix milliseconds to an aware UTC datetime.

    Naive values are assumed to be UTC. Raises ValueError when unparseable.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    if isinstance(value, bool):
        raise ValueError("boolean is not a timestamp")

    if isinstance(value, (int, float)):
        return _from_epoch(float(value))

    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"unsupported timestamp: {value!r}")

    text = value.strip()
    if _NUMERIC.match(text):
        return _from_epoch(float(text))

    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        for fmt in _FALLBACK_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
        else:
            raise ValueError(f"unrecognized timestamp format: {text!r}")

    return parse_timestamp(parsed)
