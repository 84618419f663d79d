"""Append-only event storage.

Stores accept inserts and reads only. ``update`` and ``delete`` exist on the
interface purely to refuse: they raise ImmutabilityViolation unconditionally.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import datetime

import asyncpg

from eventgateway.errors import DuplicateEvent, ImmutabilityViolation, StorageFailure
from eventgateway.models.event import Event, EventType, Platform

logger = logging.getLogger(__name__)


class EventStore(ABC):
    """Contract for the append-only event store."""

    @abstractmethod
    async def insert(self, event: Event) -> None:
        """Persist a new event. Raises DuplicateEvent if the id already exists."""
        pass

    @abstractmethod
    async def get(self, event_id: str) -> Event | None:
        pass

    @abstractmethod
    async def query_by_platform(
        self,
        platform: Platform,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[Event], int]:
        """Newest first. Returns (page, total matching)."""
        pass

    @abstractmethod
    async def query_by_owner(
        self,
        owner_platform_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 100,
    ) -> list[Event]:
        """Events on content owned by one platform account, newest first."""
        pass

    @abstractmethod
    async def query_by_actor(
        self, actor_platform_user_id: str, platform: Platform, limit: int = 100
    ) -> list[Event]:
        pass

    @abstractmethod
    async def query_by_attributed_user(
        self,
        user_id: str,
        platform: Platform | None = None,
        event_type: EventType | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 100,
    ) -> list[Event]:
        """Events attributed to an internal user, newest first."""
        pass

    async def update(self, event_id: str, changes: dict) -> None:
        raise ImmutabilityViolation("Events are immutable. Corrections require a new event.")

    async def delete(self, event_id: str) -> None:
        raise ImmutabilityViolation("Events are immutable and cannot be deleted.")

    async def close(self) -> None:
        pass


def _in_range(event: Event, start: datetime | None, end: datetime | None) -> bool:
    if start and event.timestamp < start:
        return False
    if end and event.timestamp > end:
        return False
    return True


def _newest_first(events) -> list[Event]:
    return sorted(events, key=lambda e: e.timestamp, reverse=True)


class InMemoryEventStore(EventStore):
    """Process-local store with the same secondary indexes as the database schema."""

    def __init__(self, dedupe_raw_event_ids: bool = False):
        self.dedupe_raw_event_ids = dedupe_raw_event_ids
        self._events: dict[str, Event] = {}
        self._by_platform: dict[Platform, list[str]] = defaultdict(list)
        self._by_owner: dict[str, list[str]] = defaultdict(list)
        self._by_actor: dict[tuple[str, Platform], list[str]] = defaultdict(list)
        self._by_attributed_user: dict[str, list[str]] = defaultdict(list)
        self._raw_event_keys: set[tuple[Platform, str]] = set()
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._events)

    async def insert(self, event: Event) -> None:
        raw_key = (event.platform, event.metadata.raw_event_id)
        async with self._lock:
            if event.id in self._events:
                raise DuplicateEvent(f"Event {event.id} already exists", field="id")
            if self.dedupe_raw_event_ids and event.metadata.raw_event_id:
                if raw_key in self._raw_event_keys:
                    raise DuplicateEvent(
                        f"Raw event {event.metadata.raw_event_id} already ingested for {event.platform.value}",
                        field="metadata.raw_event_id",
                    )
                self._raw_event_keys.add(raw_key)

            self._events[event.id] = event
            self._by_platform[event.platform].append(event.id)
            self._by_owner[event.subject.owner_platform_id].append(event.id)
            self._by_actor[(event.actor.platform_user_id, event.platform)].append(event.id)
            if event.attributed_user_id:
                self._by_attributed_user[event.attributed_user_id].append(event.id)

    async def get(self, event_id: str) -> Event | None:
        return self._events.get(event_id)

    def _resolve(self, ids: list[str]) -> list[Event]:
        return [self._events[i] for i in ids]

    async def query_by_platform(self, platform, start=None, end=None, limit=100, offset=0):
        matching = _newest_first(
            e for e in self._resolve(self._by_platform[Platform(platform)]) if _in_range(e, start, end)
        )
        return matching[offset:offset + limit], len(matching)

    async def query_by_owner(self, owner_platform_id, start=None, end=None, limit=100):
        matching = (e for e in self._resolve(self._by_owner[owner_platform_id]) if _in_range(e, start, end))
        return _newest_first(matching)[:limit]

    async def query_by_actor(self, actor_platform_user_id, platform, limit=100):
        key = (actor_platform_user_id, Platform(platform))
        return _newest_first(self._resolve(self._by_actor[key]))[:limit]

    async def query_by_attributed_user(
        self, user_id, platform=None, event_type=None, start=None, end=None, limit=100
    ):
        matching = (
            e for e in self._resolve(self._by_attributed_user[user_id])
            if (platform is None or e.platform is Platform(platform))
            and (event_type is None or e.type is EventType(event_type))
            and _in_range(e, start, end)
        )
        return _newest_first(matching)[:limit]


_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS events (
    id                      TEXT PRIMARY KEY,
    type                    TEXT NOT NULL,
    platform                TEXT NOT NULL,
    actor_platform_user_id  TEXT NOT NULL,
    owner_platform_id       TEXT NOT NULL,
    raw_event_id            TEXT,
    attributed_user_id      TEXT,
    timestamp               TIMESTAMPTZ NOT NULL,
    ingested_at             TIMESTAMPTZ NOT NULL,
    body                    JSONB NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_events_platform_type_time ON events (platform, type, timestamp DESC);
CREATE INDEX IF NOT EXISTS idx_events_owner_time ON events (owner_platform_id, timestamp DESC);
CREATE INDEX IF NOT EXISTS idx_events_actor_platform ON events (actor_platform_user_id, platform);
CREATE INDEX IF NOT EXISTS idx_events_attributed_time ON events (attributed_user_id, timestamp DESC);

CREATE OR REPLACE FUNCTION events_reject_mutation() RETURNS trigger AS $$
BEGIN
    RAISE EXCEPTION 'Events are immutable' USING ERRCODE = 'P0001';
END;
$$ LANGUAGE plpgsql;

DROP TRIGGER IF EXISTS events_append_only ON events;
CREATE TRIGGER events_append_only
    BEFORE UPDATE OR DELETE ON events
    FOR EACH ROW EXECUTE FUNCTION events_reject_mutation();
"""

_RAW_EVENT_UNIQUE_SQL = """
CREATE UNIQUE INDEX IF NOT EXISTS uq_events_platform_raw_event
    ON events (platform, raw_event_id) WHERE raw_event_id IS NOT NULL;
"""

_INSERT_SQL = """
INSERT INTO events (
    id, type, platform, actor_platform_user_id, owner_platform_id,
    raw_event_id, attributed_user_id, timestamp, ingested_at, body
) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10::jsonb)
"""


def _event_from_row(rec: asyncpg.Record) -> Event:
    body = rec["body"]
    if isinstance(body, str):
        body = json.loads(body)
    return Event.model_validate(body)


class PostgresEventStore(EventStore):
    """asyncpg-backed store. Schema is created on first connect."""

    def __init__(self, dsn: str, dedupe_raw_event_ids: bool = False):
        self.dsn = dsn.replace("postgresql+asyncpg://", "postgresql://")
        self.dedupe_raw_event_ids = dedupe_raw_event_ids
        self._pool: asyncpg.Pool | None = None

    async def _get_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            try:
                self._pool = await asyncpg.create_pool(dsn=self.dsn, min_size=1, max_size=10)
                async with self._pool.acquire() as conn:
                    await conn.execute(_SCHEMA_SQL)
                    if self.dedupe_raw_event_ids:
                        await conn.execute(_RAW_EVENT_UNIQUE_SQL)
            except (OSError, asyncpg.PostgresError) as e:
                self._pool = None
                raise StorageFailure(f"Event store unavailable: {e}") from e
            logger.info("Event store pool ready")
        return self._pool

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def _fetch(self, sql: str, *args) -> list[asyncpg.Record]:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                return await conn.fetch(sql, *args)
        except (OSError, asyncpg.PostgresError) as e:
            raise StorageFailure(f"Event store query failed: {e}") from e

    async def insert(self, event: Event) -> None:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                await conn.execute(
                    _INSERT_SQL,
                    event.id,
                    event.type.value,
                    event.platform.value,
                    event.actor.platform_user_id,
                    event.subject.owner_platform_id,
                    event.metadata.raw_event_id,
                    event.attributed_user_id,
                    event.timestamp,
                    event.ingested_at,
                    json.dumps(event.to_wire()),
                )
        except asyncpg.UniqueViolationError as e:
            if e.constraint_name == "uq_events_platform_raw_event":
                raise DuplicateEvent(
                    f"Raw event {event.metadata.raw_event_id} already ingested for {event.platform.value}",
                    field="metadata.raw_event_id",
                ) from e
            raise DuplicateEvent(f"Event {event.id} already exists", field="id") from e
        except (OSError, asyncpg.PostgresError) as e:
            raise StorageFailure(f"Event insert failed: {e}") from e

    async def get(self, event_id: str) -> Event | None:
        rows = await self._fetch("SELECT body FROM events WHERE id = $1", event_id)
        return _event_from_row(rows[0]) if rows else None

    async def query_by_platform(self, platform, start=None, end=None, limit=100, offset=0):
        conditions = ["platform = $1"]
        args: list = [Platform(platform).value]
        if start:
            args.append(start)
            conditions.append(f"timestamp >= ${len(args)}")
        if end:
            args.append(end)
            conditions.append(f"timestamp <= ${len(args)}")
        where = " AND ".join(conditions)

        total_rows = await self._fetch(f"SELECT COUNT(*) AS total FROM events WHERE {where}", *args)
        rows = await self._fetch(
            f"SELECT body FROM events WHERE {where} ORDER BY timestamp DESC"
            f" LIMIT ${len(args) + 1} OFFSET ${len(args) + 2}",
            *args, limit, offset,
        )
        return [_event_from_row(r) for r in rows], total_rows[0]["total"]

    async def _select(self, filters: list[tuple[str, object]], limit: int) -> list[Event]:
        """SELECT newest-first bodies matching every (condition, value) pair with a value."""
        conditions, args = [], []
        for condition, value in filters:
            if value is None:
                continue
            args.append(value)
            conditions.append(condition.format(f"${len(args)}"))
        args.append(limit)
        rows = await self._fetch(
            f"SELECT body FROM events WHERE {' AND '.join(conditions)}"
            f" ORDER BY timestamp DESC LIMIT ${len(args)}",
            *args,
        )
        return [_event_from_row(r) for r in rows]

    async def query_by_owner(self, owner_platform_id, start=None, end=None, limit=100):
        return await self._select(
            [
                ("owner_platform_id = {}", owner_platform_id),
                ("timestamp >= {}", start),
                ("timestamp <= {}", end),
            ],
            limit,
        )

    async def query_by_actor(self, actor_platform_user_id, platform, limit=100):
        return await self._select(
            [
                ("actor_platform_user_id = {}", actor_platform_user_id),
                ("platform = {}", Platform(platform).value),
            ],
            limit,
        )

    async def query_by_attributed_user(
        self, user_id, platform=None, event_type=None, start=None, end=None, limit=100
    ):
        return await self._select(
            [
                ("attributed_user_id = {}", user_id),
                ("platform = {}", Platform(platform).value if platform else None),
                ("type = {}", EventType(event_type).value if event_type else None),
                ("timestamp >= {}", start),
                ("timestamp <= {}", end),
            ],
            limit,
        )
