import asyncio
import time
from datetime import datetime, timedelta, timezone

import pytest

from eventgateway.coordinator import IngestionCoordinator, new_event_id
from eventgateway.directory import StaticUserDirectory, UserDirectory
from eventgateway.errors import (
    BatchSizeError,
    DuplicateEvent,
    ImmutabilityViolation,
    NotFound,
    StorageFailure,
    ValidationError,
)
from eventgateway.models.event import EventType, Platform
from eventgateway.normalizers import normalize
from eventgateway.rollups import InMemoryRollupSink, RollupQueue, RollupSink
from eventgateway.store import InMemoryEventStore
from eventgateway.webhooks.envelopes import unpack_notification


class SlowDirectory(UserDirectory):
    async def lookup(self, platform, platform_user_id):
        await asyncio.sleep(5)
        return "user_never"


class BrokenDirectory(UserDirectory):
    async def lookup(self, platform, platform_user_id):
        raise ConnectionError("directory down")


class FailingSink(RollupSink):
    def __init__(self):
        self.calls = 0

    async def apply(self, update):
        self.calls += 1
        raise RuntimeError("rollup backend unavailable")


class ExplodingStore(InMemoryEventStore):
    async def insert(self, event):
        raise RuntimeError("disk on fire")


def test_new_event_ids_are_prefixed_and_unique():
    ids = {new_event_id() for _ in range(100)}
    assert len(ids) == 100
    assert all(i.startswith("evt_") for i in ids)


@pytest.mark.asyncio
async def test_ingest_one_mints_identity_and_attributes(coordinator, store, make_draft):
    event = await coordinator.ingest_one(make_draft())

    assert event.id.startswith("evt_")
    assert event.ingested_at >= event.timestamp
    assert event.attributed_user_id == "user_1"
    assert await store.get(event.id) == event


@pytest.mark.asyncio
async def test_caller_supplied_system_fields_are_ignored(coordinator, make_draft):
    draft = make_draft(id="evt_mine", ingested_at="2020-01-01T00:00:00Z", attributed_user_id="user_9")

    event = await coordinator.ingest_one(draft)
    assert event.id != "evt_mine"
    assert event.attributed_user_id == "user_1"
    assert event.ingested_at.year != 2020


@pytest.mark.asyncio
async def test_same_draft_twice_gives_two_events(coordinator, store, make_draft):
    draft = make_draft()
    first = await coordinator.ingest_one(draft)
    second = await coordinator.ingest_one(draft)

    assert first.id != second.id
    assert len(store) == 2


@pytest.mark.asyncio
async def test_unknown_owner_is_stored_unattributed(coordinator, make_draft):
    draft = make_draft(subject={"content_id": "c1", "content_type": "post", "owner_platform_id": "nobody"})

    event = await coordinator.ingest_one(draft)
    assert event.attributed_user_id is None


@pytest.mark.asyncio
@pytest.mark.parametrize("directory_cls", [SlowDirectory, BrokenDirectory])
async def test_attribution_failure_never_blocks_ingestion(directory_cls, store, settings, make_draft):
    coordinator = IngestionCoordinator(store, directory_cls(), settings=settings)

    event = await asyncio.wait_for(coordinator.ingest_one(make_draft()), timeout=2)
    assert event.attributed_user_id is None
    assert await store.get(event.id) is not None


@pytest.mark.asyncio
async def test_invalid_draft_is_not_stored(coordinator, store, make_draft):
    with pytest.raises(ValidationError):
        await coordinator.ingest_one(make_draft(type="invalid_type"))
    assert len(store) == 0


@pytest.mark.asyncio
async def test_store_errors_surface_as_storage_failure(directory, settings, make_draft):
    coordinator = IngestionCoordinator(ExplodingStore(), directory, settings=settings)

    with pytest.raises(StorageFailure):
        await coordinator.ingest_one(make_draft())


@pytest.mark.asyncio
async def test_rollup_is_applied_for_attributed_events(store, directory, settings, make_draft):
    sink = InMemoryRollupSink()
    rollups = RollupQueue(sink, retry_base_seconds=0.01)
    rollups.start()
    coordinator = IngestionCoordinator(store, directory, rollups, settings)

    event = await coordinator.ingest_one(make_draft())
    await rollups.drain()
    await rollups.stop()

    rollup = sink.get("user_1")
    assert rollup.total_events == 1
    assert rollup.platform_breakdown["twitter"] == 1
    assert rollup.last_event_ingested == event.ingested_at


@pytest.mark.asyncio
async def test_failing_rollups_never_fail_ingestion(store, directory, settings, make_draft):
    sink = FailingSink()
    rollups = RollupQueue(sink, max_attempts=3, retry_base_seconds=0.01)
    rollups.start()
    coordinator = IngestionCoordinator(store, directory, rollups, settings)

    event = await coordinator.ingest_one(make_draft())
    await rollups.drain()
    await rollups.stop()

    assert await store.get(event.id) is not None
    assert sink.calls == 3


@pytest.mark.asyncio
async def test_batch_partial_success(coordinator, store, make_draft):
    missing_type = make_draft()
    del missing_type["type"]
    drafts = [make_draft(), missing_type, make_draft(platform="myspace"), make_draft()]

    result = await coordinator.ingest_batch(drafts)

    assert len(result.successful) == 2
    assert sorted(f.index for f in result.failed) == [1, 2]
    assert len(result.successful) + len(result.failed) == len(drafts)
    fields = {f.index: f.field for f in result.failed}
    assert fields == {1: "type", 2: "platform"}
    assert len(store) == 2


@pytest.mark.asyncio
async def test_batch_of_maximum_size_succeeds(coordinator, store, make_draft):
    drafts = [make_draft() for _ in range(1000)]

    result = await coordinator.ingest_batch(drafts)

    assert len(result.successful) == 1000
    assert result.failed == []
    assert len(set(result.successful)) == 1000
    assert len(store) == 1000


@pytest.mark.asyncio
async def test_oversized_batch_is_rejected_wholesale(coordinator, store, make_draft):
    with pytest.raises(BatchSizeError):
        await coordinator.ingest_batch([make_draft() for _ in range(1001)])
    assert len(store) == 0


@pytest.mark.asyncio
async def test_empty_batch_is_rejected(coordinator):
    with pytest.raises(BatchSizeError):
        await coordinator.ingest_batch([])


@pytest.mark.asyncio
async def test_get_missing_event(coordinator):
    with pytest.raises(NotFound):
        await coordinator.get("evt_nope")


@pytest.mark.asyncio
async def test_events_cannot_be_modified(coordinator, store, make_draft):
    event = await coordinator.ingest_one(make_draft())

    with pytest.raises(ImmutabilityViolation):
        await coordinator.update(event.id, {"type": "share"})
    with pytest.raises(ImmutabilityViolation):
        await coordinator.delete(event.id)
    assert await store.get(event.id) == event


@pytest.mark.asyncio
async def test_list_by_platform_pages(coordinator, make_draft):
    for _ in range(5):
        await coordinator.ingest_one(make_draft())
    await coordinator.ingest_one(make_draft(platform="instagram"))

    page, total = await coordinator.list_by_platform(Platform.TWITTER, limit=2, page=3)
    assert total == 5
    assert len(page) == 1


@pytest.mark.asyncio
async def test_seeded_directory_attributes_instagram(store, settings, make_draft):
    directory = StaticUserDirectory.from_seed("instagram:ig_owner=user_7, bogus, myspace:1=user_x")
    coordinator = IngestionCoordinator(store, directory, settings=settings)
    draft = make_draft(
        platform="instagram",
        subject={"content_id": "m1", "content_type": "reel", "owner_platform_id": "ig_owner"},
    )

    event = await coordinator.ingest_one(draft)
    assert event.attributed_user_id == "user_7"


def _instagram_like(actor_id):
    return {
        "engagement_type": "like",
        "media": {"id": "m1", "media_type": "IMAGE", "owner": {"id": "ig_owner"}},
        "user": {"id": actor_id, "username": actor_id},
    }


@pytest.mark.asyncio
async def test_dedupe_keeps_distinct_actors_on_the_same_content(directory, settings):
    store = InMemoryEventStore(dedupe_raw_event_ids=True)
    coordinator = IngestionCoordinator(store, directory, settings=settings)

    for actor_id in ("u1", "u2"):
        await coordinator.ingest_one(normalize("instagram", _instagram_like(actor_id)))

    assert len(store) == 2


@pytest.mark.asyncio
async def test_dedupe_keeps_distinct_followers_of_one_profile(directory, settings):
    store = InMemoryEventStore(dedupe_raw_event_ids=True)
    coordinator = IngestionCoordinator(store, directory, settings=settings)
    now_ms = str(int(time.time() * 1000) - 1000)
    body = {
        "for_user_id": "t1",
        "follow_events": [
            {"type": "follow", "created_timestamp": now_ms, "target": {"id": "t1"},
             "source": {"id": actor_id, "screen_name": actor_id}}
            for actor_id in ("a", "b")
        ],
    }

    for raw in unpack_notification(Platform.TWITTER, body):
        await coordinator.ingest_one(normalize("twitter", raw))

    assert len(store) == 2
    actors = {e.actor.platform_user_id for e in await coordinator.list_by_owner("t1")}
    assert actors == {"a", "b"}


@pytest.mark.asyncio
async def test_dedupe_still_rejects_redelivered_native_ids(directory, settings):
    store = InMemoryEventStore(dedupe_raw_event_ids=True)
    coordinator = IngestionCoordinator(store, directory, settings=settings)
    raw = {**_instagram_like("u1"), "event_id": "c_1"}

    await coordinator.ingest_one(normalize("instagram", raw))
    with pytest.raises(DuplicateEvent):
        await coordinator.ingest_one(normalize("instagram", raw))
    assert len(store) == 1


@pytest.mark.asyncio
async def test_list_by_attributed_user_filters(coordinator, make_draft):
    now = datetime.now(timezone.utc)
    old = await coordinator.ingest_one(make_draft(timestamp=(now - timedelta(days=3)).isoformat()))
    recent = await coordinator.ingest_one(make_draft(timestamp=(now - timedelta(hours=1)).isoformat()))
    comment = await coordinator.ingest_one(make_draft(type="comment"))
    await coordinator.ingest_one(make_draft(platform="tiktok"))

    everything = await coordinator.list_by_attributed_user("user_1")
    assert len(everything) == 3

    engagements = await coordinator.list_by_attributed_user(
        "user_1", platform=Platform.TWITTER, event_type=EventType.ENGAGEMENT
    )
    assert [e.id for e in engagements] == [recent.id, old.id]

    windowed = await coordinator.list_by_attributed_user("user_1", start=now - timedelta(days=1))
    assert {e.id for e in windowed} == {recent.id, comment.id}

    assert len(await coordinator.list_by_attributed_user("user_1", limit=1)) == 1


@pytest.mark.asyncio
async def test_list_by_actor(coordinator, make_draft):
    await coordinator.ingest_one(make_draft())
    await coordinator.ingest_one(make_draft(platform="instagram"))

    events = await coordinator.list_by_actor("tw_12345", Platform.TWITTER)
    assert [e.platform for e in events] == [Platform.TWITTER]
