"""Canonical event model.

Every activity record, whatever platform it came from, ends up as one of these.
Instances are frozen: once built, no field can be reassigned.
"""

from enum import Enum

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, StrictInt
from pydantic import ValidationError as PydanticValidationError

from eventgateway.errors import SchemaViolation


class EventType(str, Enum):
    ENGAGEMENT = "engagement"  # likes, reactions
    IMPRESSION = "impression"  # views, reach
    FOLLOW = "follow"          # follows, subscribes
    SHARE = "share"            # retweets, reposts
    COMMENT = "comment"        # comments, replies
    SAVE = "save"              # bookmarks, saves
    CLICK = "click"            # link clicks


class Platform(str, Enum):
    TWITTER = "twitter"
    INSTAGRAM = "instagram"
    TIKTOK = "tiktok"
    YOUTUBE = "youtube"
    FACEBOOK = "facebook"
    THREADS = "threads"


class ContentType(str, Enum):
    POST = "post"
    VIDEO = "video"
    PROFILE = "profile"
    STORY = "story"
    REEL = "reel"
    SHORT = "short"


class EventSource(str, Enum):
    API = "api"
    SCRAPER = "scraper"
    MANUAL = "manual"
    WEBHOOK = "webhook"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class Actor(_Frozen):
    """Who performed the action."""
    platform_user_id: str = Field(..., min_length=1)
    username: str = Field(..., min_length=1)
    display_name: str | None = None
    avatar_url: str | None = None


class Subject(_Frozen):
    """What was acted upon, and who owns it."""
    content_id: str = Field(..., min_length=1)
    content_type: ContentType
    owner_platform_id: str = Field(..., min_length=1)


class Metrics(_Frozen):
    """Raw measurements only. No weights or scores."""
    count: StrictInt = Field(default=1, ge=0)
    duration_ms: float | None = Field(None, ge=0)
    value: float | None = None


class Metadata(_Frozen):
    source: EventSource
    is_verified: bool | None = None
    raw_event_id: str | None = None
    user_agent: str | None = None
    ip_address: str | None = None


class Event(_Frozen):
    id: str = Field(..., min_length=1)
    type: EventType
    platform: Platform
    actor: Actor
    subject: Subject
    metrics: Metrics
    metadata: Metadata
    timestamp: AwareDatetime
    ingested_at: AwareDatetime
    attributed_user_id: str | None = None

    def to_wire(self) -> dict:
        """Canonical JSON shape, optional fields left out when unset."""
        return self.model_dump(mode="json", exclude_none=True)


def _field_path(loc: tuple) -> str:
    return ".".join(str(part) for part in loc if not isinstance(part, int)) or "event"


def build_event(draft: dict) -> Event:
    """Construct an Event from a fully populated draft.

    Only shape and enum closure are checked here; temporal rules live in
    eventgateway.validation. Raises SchemaViolation naming the first bad field.
    """
    try:
        return Event.model_validate(draft)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = _field_path(first["loc"])
        raise SchemaViolation(f"{field}: {first['msg']}", field=field) from e
