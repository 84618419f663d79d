from datetime import datetime, timedelta, timezone

import pytest

from eventgateway.errors import BatchSizeError, ValidationError
from eventgateway.validation import REQUIRED_FIELDS, check_batch_size, check_required, validate

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def _validate(draft):
    return validate(draft, now=NOW, max_age_days=365)


def test_valid_draft_returns_parsed_timestamp(make_draft):
    result = _validate(make_draft(timestamp="2026-10-19T11:00:00Z"))

    assert result["timestamp"] == datetime(2026, 10, 19, 11, 0, tzinfo=timezone.utc)
    assert result["type"] == "engagement"


@pytest.mark.parametrize("field", REQUIRED_FIELDS)
def test_missing_top_level_field(make_draft, field):
    draft = make_draft()
    del draft[field]

    with pytest.raises(ValidationError) as exc_info:
        _validate(draft)
    assert exc_info.value.field == field


def test_presence_is_checked_before_enums(make_draft):
    draft = make_draft(type="invalid_type")
    del draft["timestamp"]

    with pytest.raises(ValidationError) as exc_info:
        _validate(draft)
    assert exc_info.value.field == "timestamp"


@pytest.mark.parametrize(
    "overrides, field",
    [
        ({"type": "invalid_type"}, "type"),
        ({"platform": "myspace"}, "platform"),
        ({"subject": {"content_id": "c", "content_type": "carousel", "owner_platform_id": "o"}}, "subject.content_type"),
        ({"metadata": {"source": "firehose"}}, "metadata.source"),
    ],
)
def test_enum_field_outside_closed_set(make_draft, overrides, field):
    with pytest.raises(ValidationError) as exc_info:
        _validate(make_draft(**overrides))
    assert exc_info.value.field == field
    assert "Must be one of" in exc_info.value.message


def test_enums_are_checked_before_nested_fields(make_draft):
    draft = make_draft(type="invalid_type", actor={"username": "no_id"})

    with pytest.raises(ValidationError) as exc_info:
        _validate(draft)
    assert exc_info.value.field == "type"


@pytest.mark.parametrize(
    "parent, key",
    [
        ("actor", "platform_user_id"),
        ("actor", "username"),
        ("subject", "content_id"),
        ("subject", "content_type"),
        ("subject", "owner_platform_id"),
    ],
)
def test_missing_nested_field(make_draft, parent, key):
    draft = make_draft()
    draft[parent] = {k: v for k, v in draft[parent].items() if k != key}

    with pytest.raises(ValidationError) as exc_info:
        _validate(draft)
    assert exc_info.value.field == f"{parent}.{key}"


@pytest.mark.parametrize("count", ["1", True, None])
def test_count_must_be_numeric(make_draft, count):
    with pytest.raises(ValidationError) as exc_info:
        _validate(make_draft(metrics={"count": count}))
    assert exc_info.value.field == "metrics.count"


def test_nested_parent_must_be_object(make_draft):
    with pytest.raises(ValidationError) as exc_info:
        _validate(make_draft(actor="johndoe"))
    assert exc_info.value.field == "actor"


def test_future_timestamp_is_rejected(make_draft):
    future = (NOW + timedelta(seconds=1)).isoformat()

    with pytest.raises(ValidationError) as exc_info:
        _validate(make_draft(timestamp=future))
    assert exc_info.value.field == "timestamp"
    assert "future" in exc_info.value.message


def test_timestamp_older_than_a_year_is_rejected(make_draft):
    stale = (NOW - timedelta(days=366)).isoformat()

    with pytest.raises(ValidationError) as exc_info:
        _validate(make_draft(timestamp=stale))
    assert exc_info.value.field == "timestamp"
    assert "older than 1 year" in exc_info.value.message


def test_unparseable_timestamp(make_draft):
    with pytest.raises(ValidationError) as exc_info:
        _validate(make_draft(timestamp="last tuesday"))
    assert exc_info.value.field == "timestamp"


@pytest.mark.parametrize(
    "value",
    [
        int((NOW - timedelta(hours=1)).timestamp()),
        int((NOW - timedelta(hours=1)).timestamp() * 1000),
        "2026-10-19T11:00:00+00:00",
    ],
)
def test_timestamp_encodings(make_draft, value):
    result = _validate(make_draft(timestamp=value))
    assert result["timestamp"] == NOW - timedelta(hours=1)


def test_same_draft_always_fails_the_same_way(make_draft):
    draft = make_draft(platform="myspace", type="invalid_type")
    messages = set()
    for _ in range(3):
        with pytest.raises(ValidationError) as exc_info:
            _validate(draft)
        messages.add((exc_info.value.field, exc_info.value.message))
    assert len(messages) == 1
    assert exc_info.value.field == "type"


def test_check_required_rejects_non_objects():
    with pytest.raises(ValidationError):
        check_required(["not", "an", "event"])


@pytest.mark.parametrize("items", [[], None, {"events": []}])
def test_batch_must_be_non_empty_list(items):
    with pytest.raises(BatchSizeError):
        check_batch_size(items, max_size=1000)


def test_batch_size_upper_bound():
    check_batch_size([{}] * 1000, max_size=1000)
    with pytest.raises(BatchSizeError) as exc_info:
        check_batch_size([{}] * 1001, max_size=1000)
    assert exc_info.value.field == "events"
