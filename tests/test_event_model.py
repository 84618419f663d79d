from datetime import datetime, timezone

import pytest
from pydantic import ValidationError as PydanticValidationError

from eventgateway.errors import SchemaViolation
from eventgateway.models.event import ContentType, EventType, Platform, build_event


def _full_draft(make_draft, **overrides):
    draft = make_draft(**overrides)
    draft.setdefault("id", "evt_test")
    draft.setdefault("ingested_at", datetime.now(timezone.utc))
    return draft


def test_build_event_returns_typed_event(make_draft):
    event = build_event(_full_draft(make_draft))

    assert event.id == "evt_test"
    assert event.type is EventType.ENGAGEMENT
    assert event.platform is Platform.TWITTER
    assert event.subject.content_type is ContentType.POST
    assert event.metrics.count == 1
    assert event.attributed_user_id is None


def test_event_is_frozen(make_draft):
    event = build_event(_full_draft(make_draft))

    with pytest.raises(PydanticValidationError):
        event.type = EventType.SHARE
    with pytest.raises(PydanticValidationError):
        event.actor.username = "someone_else"


def test_unknown_enum_value_is_rejected_not_coerced(make_draft):
    with pytest.raises(SchemaViolation) as exc_info:
        build_event(_full_draft(make_draft, type="like"))
    assert exc_info.value.field == "type"


def test_nested_field_path_is_reported(make_draft):
    draft = _full_draft(make_draft)
    draft["subject"] = {**draft["subject"], "content_type": "carousel"}

    with pytest.raises(SchemaViolation) as exc_info:
        build_event(draft)
    assert exc_info.value.field == "subject.content_type"


def test_unknown_fields_are_rejected(make_draft):
    with pytest.raises(SchemaViolation) as exc_info:
        build_event(_full_draft(make_draft, pinscore_score=9.5))
    assert exc_info.value.field == "pinscore_score"


def test_negative_count_is_rejected(make_draft):
    with pytest.raises(SchemaViolation) as exc_info:
        build_event(_full_draft(make_draft, metrics={"count": -1}))
    assert exc_info.value.field == "metrics.count"


def test_naive_timestamp_is_rejected(make_draft):
    with pytest.raises(SchemaViolation) as exc_info:
        build_event(_full_draft(make_draft, timestamp=datetime(2026, 1, 1, 12, 0)))
    assert exc_info.value.field == "timestamp"


def test_to_wire_uses_iso_timestamps_and_omits_unset_fields(make_draft):
    event = build_event(_full_draft(make_draft, timestamp=datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)))
    wire = event.to_wire()

    assert wire["timestamp"].startswith("2026-03-01T09:30:00")
    assert wire["type"] == "engagement"
    assert "attributed_user_id" not in wire
    assert "avatar_url" not in wire["actor"]
