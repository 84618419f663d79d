"""Base normalizer interface for platform payloads."""

import re
from abc import ABC, abstractmethod

from eventgateway.errors import NormalizationError
from eventgateway.models.event import ContentType, EventSource, EventType, Platform
from eventgateway.timestamps import parse_timestamp, utcnow

_ISO_DURATION = re.compile(r"^P(?:(\d+)D)?(?:T(?:(\d+)H)?(?:(\d+)M)?(?:(\d+(?:\.\d+)?)S)?)?$")


def str_id(value) -> str | None:
    """Platform ids arrive as ints or strings; the canonical model wants strings."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


def compact(data: dict) -> dict:
    """Drop keys whose value is None so absent optional fields stay absent."""
    return {k: v for k, v in data.items() if v is not None}


def event_count(value) -> int:
    """Raw ``count`` as an int. Absent means 1; integral floats and numeric strings are coerced."""
    if value is None:
        return 1
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            raise NormalizationError(f"count must be a whole number, got {value!r}", field="count")
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    raise NormalizationError(f"count must be a whole number, got {value!r}", field="count")


def duration_seconds(value) -> float | None:
    """Seconds from a number, a numeric string, or an ISO-8601 duration (PT1M30S)."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if value >= 0 else None
    if isinstance(value, str):
        text = value.strip()
        try:
            return float(text)
        except ValueError:
            pass
        match = _ISO_DURATION.match(text)
        if match and any(match.groups()):
            days, hours, minutes, seconds = (float(g or 0) for g in match.groups())
            return days * 86400 + hours * 3600 + minutes * 60 + seconds
    return None


class BaseNormalizer(ABC):
    """Maps one platform's raw payload shape onto a canonical draft.

    Subclasses declare the platform, the key holding the content object, and two
    static lookup tables. Unmapped engagement types become ``engagement`` and
    unmapped content types become ``post``. Normalizers never assign ``id`` or
    ``ingested_at``.
    """

    platform: Platform
    container_key: str
    ENGAGEMENT_TYPES: dict[str, EventType] = {}
    CONTENT_TYPES: dict[str, ContentType] = {}

    def event_type(self, engagement_type) -> EventType:
        if isinstance(engagement_type, str):
            return self.ENGAGEMENT_TYPES.get(engagement_type.lower(), EventType.ENGAGEMENT)
        return EventType.ENGAGEMENT

    def content_type(self, raw_content_type) -> ContentType:
        if isinstance(raw_content_type, str):
            return self.CONTENT_TYPES.get(raw_content_type, ContentType.POST)
        return ContentType.POST

    @abstractmethod
    def actor(self, user: dict) -> dict:
        """Actor fields from the platform's user object."""
        pass

    @abstractmethod
    def subject(self, content: dict) -> dict:
        """Subject fields from the platform's content object."""
        pass

    @abstractmethod
    def occurred_at(self, content: dict):
        """Raw event-time value carried by the content object, if any."""
        pass

    def duration(self, content: dict) -> float | None:
        return None

    def is_verified(self, user: dict) -> bool | None:
        return None

    def _object(self, raw: dict, key: str) -> dict:
        value = raw.get(key)
        if not isinstance(value, dict):
            raise NormalizationError(
                f"{self.platform.value} payload is missing the '{key}' object", field=key
            )
        return value

    def _timestamp(self, raw: dict, content: dict) -> str:
        value = raw.get("timestamp") or raw.get("event_time") or self.occurred_at(content)
        if value is None or value == "":
            return utcnow().isoformat()
        try:
            return parse_timestamp(value).isoformat()
        except ValueError as e:
            raise NormalizationError(f"Unparseable timestamp: {value!r}", field="timestamp") from e

    def _metrics(self, raw: dict, content: dict) -> dict:
        seconds = self.duration(content)
        return compact({
            "count": event_count(raw.get("count")),
            "duration_ms": seconds * 1000 if seconds is not None else None,
            "value": raw.get("value") if isinstance(raw.get("value"), (int, float)) else None,
        })

    def normalize(self, raw: dict, source: EventSource = EventSource.API) -> dict:
        """Translate a raw platform payload into a draft event dict."""
        if not isinstance(raw, dict):
            raise NormalizationError(f"{self.platform.value} payload must be a JSON object")

        content = self._object(raw, self.container_key)
        user = self._object(raw, "user")

        actor = compact(self.actor(user))
        if "platform_user_id" not in actor:
            raise NormalizationError(
                f"{self.platform.value} user object has no id", field="user.id"
            )
        subject = compact(self.subject(content))
        if "content_id" not in subject:
            raise NormalizationError(
                f"{self.platform.value} {self.container_key} object has no id",
                field=f"{self.container_key}.id",
            )

        # Only a native event id identifies a delivery; content ids repeat across actors
        raw_event_id = str_id(raw.get("event_id")) or str_id(raw.get("id"))

        return {
            "type": self.event_type(raw.get("engagement_type")).value,
            "platform": self.platform.value,
            "actor": actor,
            "subject": subject,
            "metrics": self._metrics(raw, content),
            "metadata": compact({
                "source": EventSource(source).value,
                "raw_event_id": raw_event_id,
                "is_verified": self.is_verified(user),
            }),
            "timestamp": self._timestamp(raw, content),
        }
