"""Ingestion coordinator - the only place canonical events are created."""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime

from eventgateway.config import Settings, settings as default_settings
from eventgateway.directory import UserDirectory
from eventgateway.errors import EventGatewayError, ImmutabilityViolation, NotFound, StorageFailure
from eventgateway.models.event import Event, EventType, Platform, build_event
from eventgateway.rollups import RollupQueue, RollupUpdate
from eventgateway.store import EventStore
from eventgateway.timestamps import utcnow
from eventgateway.validation import check_batch_size, check_required, validate

logger = logging.getLogger(__name__)

# Identity and attribution are minted here, never taken from the caller
_SYSTEM_FIELDS = ("id", "ingested_at", "attributed_user_id")


def new_event_id() -> str:
    return f"evt_{uuid.uuid4()}"


@dataclass
class BatchFailure:
    draft: object
    error: str
    field: str | None = None
    index: int | None = None


@dataclass
class BatchResult:
    successful: list[str] = field(default_factory=list)
    failed: list[BatchFailure] = field(default_factory=list)


class IngestionCoordinator:
    """Validates drafts, attributes them, mints identity and appends them to the store.

    There is no update path: ``update`` and ``delete`` always raise.
    """

    def __init__(
        self,
        store: EventStore,
        directory: UserDirectory,
        rollups: RollupQueue | None = None,
        settings: Settings | None = None,
    ):
        self.store = store
        self.directory = directory
        self.rollups = rollups
        self.settings = settings or default_settings

    async def _attribute(self, platform: str, owner_platform_id: str) -> str | None:
        """Owner lookup with a hard timeout. Any failure counts as a miss."""
        try:
            return await asyncio.wait_for(
                self.directory.lookup(Platform(platform), owner_platform_id),
                timeout=self.settings.attribution_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Attribution lookup timed out for {platform}:{owner_platform_id}")
        except Exception as e:
            logger.warning(f"Attribution lookup failed for {platform}:{owner_platform_id}: {e}")
        return None

    def _dispatch_rollup(self, event: Event) -> None:
        if self.rollups is None or event.attributed_user_id is None:
            return
        try:
            self.rollups.enqueue(RollupUpdate.from_event(event))
        except Exception as e:
            logger.error(f"Could not dispatch rollup for event {event.id}: {e}")

    async def ingest_one(self, draft: dict, now: datetime | None = None) -> Event:
        """Validate, attribute, persist. Returns the frozen stored event."""
        checked = validate(draft, now=now, max_age_days=self.settings.max_event_age_days)
        checked = {k: v for k, v in checked.items() if k not in _SYSTEM_FIELDS}

        attributed_user_id = await self._attribute(
            checked["platform"], checked["subject"]["owner_platform_id"]
        )
        if attributed_user_id is None:
            logger.debug(
                f"No user owns {checked['platform']}:{checked['subject']['owner_platform_id']}"
            )

        event = build_event({
            **checked,
            "id": new_event_id(),
            "ingested_at": utcnow(),
            "attributed_user_id": attributed_user_id,
        })

        try:
            await self.store.insert(event)
        except EventGatewayError:
            raise
        except Exception as e:
            raise StorageFailure(f"Event insert failed: {e}") from e

        self._dispatch_rollup(event)
        logger.info(f"Ingested {event.id} ({event.platform.value}/{event.type.value})")
        return event

    async def ingest_batch(self, drafts: list, now: datetime | None = None) -> BatchResult:
        """Ingest each draft independently; one failure never aborts the rest.

        Raises BatchSizeError before touching any item when the batch is empty
        or too large.
        """
        check_batch_size(drafts, self.settings.batch_max_size)

        result = BatchResult()

        # Pre-filter: items missing top-level fields fail before any lookup
        admitted = []
        for index, draft in enumerate(drafts):
            try:
                check_required(draft)
            except EventGatewayError as e:
                result.failed.append(BatchFailure(draft=draft, error=e.message, field=e.field, index=index))
            else:
                admitted.append((index, draft))

        semaphore = asyncio.Semaphore(max(1, self.settings.batch_concurrency))

        async def _one(index: int, draft: dict) -> None:
            try:
                async with semaphore:
                    event = await self.ingest_one(draft, now=now)
            except EventGatewayError as e:
                result.failed.append(BatchFailure(draft=draft, error=e.message, field=e.field, index=index))
            except Exception as e:
                logger.exception(f"Unexpected failure ingesting batch item {index}")
                result.failed.append(BatchFailure(draft=draft, error=str(e), index=index))
            else:
                result.successful.append(event.id)

        await asyncio.gather(*(_one(i, d) for i, d in admitted))
        logger.info(f"Batch ingested: {len(result.successful)} ok, {len(result.failed)} failed")
        return result

    async def get(self, event_id: str) -> Event:
        event = await self.store.get(event_id)
        if event is None:
            raise NotFound("Event not found", field="event_id")
        return event

    async def list_by_platform(
        self,
        platform: Platform,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 100,
        page: int = 1,
    ) -> tuple[list[Event], int]:
        return await self.store.query_by_platform(
            platform, start=start, end=end, limit=limit, offset=(page - 1) * limit
        )

    async def list_by_attributed_user(
        self,
        user_id: str,
        platform: Platform | None = None,
        event_type: EventType | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 100,
    ) -> list[Event]:
        return await self.store.query_by_attributed_user(
            user_id, platform=platform, event_type=event_type, start=start, end=end, limit=limit
        )

    async def list_by_owner(
        self,
        owner_platform_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 100,
    ) -> list[Event]:
        return await self.store.query_by_owner(owner_platform_id, start=start, end=end, limit=limit)

    async def list_by_actor(self, actor_platform_user_id: str, platform: Platform, limit: int = 100) -> list[Event]:
        return await self.store.query_by_actor(actor_platform_user_id, platform, limit=limit)

    async def update(self, event_id: str, changes: dict) -> None:
        raise ImmutabilityViolation()

    async def delete(self, event_id: str) -> None:
        raise ImmutabilityViolation()
