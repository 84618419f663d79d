"""Per-user rollup counters, updated off the ingestion critical path.

The coordinator drops a RollupUpdate on an asyncio queue and moves on. A single
background worker drains the queue and applies each update to a sink, retrying
with exponential backoff. Sinks dedupe on event_id, so a retried update is
never counted twice.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import OrderedDict
from datetime import datetime

import httpx
from pydantic import BaseModel, Field

from eventgateway.models.event import Event, Platform

logger = logging.getLogger(__name__)


class RollupUpdate(BaseModel):
    event_id: str
    user_id: str
    platform: Platform
    count: int = 1
    ingested_at: datetime

    @classmethod
    def from_event(cls, event: Event) -> "RollupUpdate":
        return cls(
            event_id=event.id,
            user_id=event.attributed_user_id,
            platform=event.platform,
            count=event.metrics.count,
            ingested_at=event.ingested_at,
        )


class UserRollup(BaseModel):
    total_events: int = 0
    platform_breakdown: dict[str, int] = Field(
        default_factory=lambda: {p.value: 0 for p in Platform}
    )
    last_event_ingested: datetime | None = None


class RollupSink(ABC):
    @abstractmethod
    async def apply(self, update: RollupUpdate) -> None:
        """Apply one update. Must be idempotent on update.event_id."""
        pass

    async def close(self) -> None:
        pass


class InMemoryRollupSink(RollupSink):
    """Counters kept in process.

    Only the most recent ``max_tracked`` event ids are remembered for deduplication.
    """

    def __init__(self, max_tracked: int = 100_000):
        self.rollups: dict[str, UserRollup] = {}
        self.max_tracked = max_tracked
        self._applied: OrderedDict[str, None] = OrderedDict()

    async def apply(self, update: RollupUpdate) -> None:
        if update.event_id in self._applied:
            return
        rollup = self.rollups.setdefault(update.user_id, UserRollup())
        rollup.total_events += 1
        rollup.platform_breakdown[update.platform.value] += 1
        if rollup.last_event_ingested is None or update.ingested_at > rollup.last_event_ingested:
            rollup.last_event_ingested = update.ingested_at
        self._applied[update.event_id] = None
        if len(self._applied) > self.max_tracked:
            self._applied.popitem(last=False)

    @property
    def tracked(self) -> int:
        return len(self._applied)

    def get(self, user_id: str) -> UserRollup | None:
        return self.rollups.get(user_id)


class HttpRollupSink(RollupSink):
    """Pushes counters to the account service, keyed for idempotent retries."""

    def __init__(self, base_url: str, token: str = "", timeout: float = 5.0):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self._client = httpx.AsyncClient(timeout=timeout)

    async def apply(self, update: RollupUpdate) -> None:
        headers = {"Idempotency-Key": update.event_id}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        response = await self._client.post(
            f"{self.base_url}/users/{update.user_id}/event-stats",
            json=update.model_dump(mode="json"),
            headers=headers,
        )
        response.raise_for_status()

    async def close(self) -> None:
        await self._client.aclose()


class RollupQueue:
    def __init__(
        self,
        sink: RollupSink,
        maxsize: int = 10000,
        max_attempts: int = 5,
        retry_base_seconds: float = 0.5,
    ):
        self.sink = sink
        self.max_attempts = max_attempts
        self.retry_base_seconds = retry_base_seconds
        self._queue: asyncio.Queue[RollupUpdate] = asyncio.Queue(maxsize=maxsize)
        self._worker: asyncio.Task | None = None
        self.dropped = 0

    def enqueue(self, update: RollupUpdate) -> bool:
        """Non-blocking. Returns False (and logs) when the update was dropped."""
        try:
            self._queue.put_nowait(update)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(f"Rollup queue full, dropping update for event {update.event_id}")
            return False
        return True

    async def _apply_with_retry(self, update: RollupUpdate) -> None:
        for attempt in range(1, self.max_attempts + 1):
            try:
                await self.sink.apply(update)
                return
            except Exception as e:
                if attempt == self.max_attempts:
                    logger.error(
                        f"Rollup update for event {update.event_id} failed after {attempt} attempts: {e}"
                    )
                    return
                delay = self.retry_base_seconds * 2 ** (attempt - 1)
                logger.warning(f"Rollup update for event {update.event_id} failed ({e}), retrying in {delay}s")
                await asyncio.sleep(delay)

    async def _run(self) -> None:
        while True:
            update = await self._queue.get()
            try:
                await self._apply_with_retry(update)
            finally:
                self._queue.task_done()

    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name="rollup-worker")

    async def drain(self) -> None:
        """Wait until every queued update has been applied or given up on."""
        await self._queue.join()

    async def stop(self, drain_timeout: float = 0) -> None:
        """Stop the worker after giving queued updates up to ``drain_timeout`` seconds to apply."""
        if self._worker is not None:
            if drain_timeout > 0 and not self._worker.done():
                try:
                    await asyncio.wait_for(self.drain(), timeout=drain_timeout)
                except asyncio.TimeoutError:
                    logger.warning(
                        f"Rollup drain timed out after {drain_timeout}s, {self._queue.qsize()} updates not applied"
                    )
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        await self.sink.close()
