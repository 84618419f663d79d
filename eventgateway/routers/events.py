"""Event ingestion and query endpoints."""

import logging
import math
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Body, Depends, Query, Request
from pydantic import BaseModel, Field
from slowapi import Limiter
from slowapi.util import get_remote_address

from eventgateway.config import settings
from eventgateway.coordinator import IngestionCoordinator
from eventgateway.dependencies import get_coordinator
from eventgateway.errors import ValidationError
from eventgateway.models.event import EventSource, EventType, Platform
from eventgateway.normalizers import normalize
from eventgateway.timestamps import parse_timestamp

logger = logging.getLogger(__name__)
router = APIRouter()

limiter = Limiter(key_func=get_remote_address)


class IngestResponse(BaseModel):
    event_id: str
    ingested_at: datetime


class BatchIngestRequest(BaseModel):
    events: Any = None


class FailedItem(BaseModel):
    draft: Any
    error: str
    field: str | None = None
    index: int | None = None


class BatchIngestResponse(BaseModel):
    successful: list[str]
    failed: list[FailedItem]


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    pages: int


class EventPage(BaseModel):
    data: list[dict]
    pagination: Pagination


class EventList(BaseModel):
    data: list[dict]


def _parse_bound(value: str | None, field: str) -> datetime | None:
    if value is None:
        return None
    try:
        return parse_timestamp(value)
    except ValueError:
        raise ValidationError(f"Invalid {field}. Must be ISO8601", field=field)


@router.post("/ingest", response_model=IngestResponse, status_code=201)
@limiter.limit(settings.ingest_rate_limit)
async def ingest_event(
    request: Request,
    draft: dict = Body(...),
    coordinator: IngestionCoordinator = Depends(get_coordinator),
):
    """Ingest a single canonical event."""
    event = await coordinator.ingest_one(draft)
    return IngestResponse(event_id=event.id, ingested_at=event.ingested_at)


@router.post("/ingest/batch", response_model=BatchIngestResponse, status_code=201)
@limiter.limit(settings.ingest_rate_limit)
async def ingest_batch(
    request: Request,
    batch: BatchIngestRequest,
    coordinator: IngestionCoordinator = Depends(get_coordinator),
):
    """Ingest up to 1000 canonical events. Items succeed or fail independently."""
    result = await coordinator.ingest_batch(batch.events)
    return BatchIngestResponse(
        successful=result.successful,
        failed=[
            FailedItem(draft=f.draft, error=f.error, field=f.field, index=f.index)
            for f in result.failed
        ],
    )


@router.post("/ingest/raw/{platform}", response_model=IngestResponse, status_code=201)
@limiter.limit(settings.ingest_rate_limit)
async def ingest_raw(
    request: Request,
    platform: Platform,
    raw: dict = Body(...),
    source: EventSource = Query(default=EventSource.API),
    coordinator: IngestionCoordinator = Depends(get_coordinator),
):
    """Normalize a platform-native payload (API pull, scraper) and ingest it."""
    draft = normalize(platform, raw, source=source)
    event = await coordinator.ingest_one(draft)
    return IngestResponse(event_id=event.id, ingested_at=event.ingested_at)


@router.get("/platform/{platform}", response_model=EventPage)
async def list_platform_events(
    platform: Platform,
    start_date: str | None = Query(default=None, alias="startDate"),
    end_date: str | None = Query(default=None, alias="endDate"),
    limit: int = Query(default=100, ge=1, le=1000),
    page: int = Query(default=1, ge=1),
    coordinator: IngestionCoordinator = Depends(get_coordinator),
):
    """Events for one platform, newest first."""
    start = _parse_bound(start_date, "startDate")
    end = _parse_bound(end_date, "endDate")
    events, total = await coordinator.list_by_platform(
        platform, start=start, end=end, limit=limit, page=page
    )
    return EventPage(
        data=[e.to_wire() for e in events],
        pagination=Pagination(total=total, page=page, limit=limit, pages=math.ceil(total / limit)),
    )


@router.get("/user/{user_id}", response_model=EventList)
async def list_user_events(
    user_id: str,
    platform: Platform | None = Query(default=None),
    event_type: EventType | None = Query(default=None, alias="type"),
    start_date: str | None = Query(default=None, alias="startDate"),
    end_date: str | None = Query(default=None, alias="endDate"),
    limit: int = Query(default=100, ge=1, le=1000),
    coordinator: IngestionCoordinator = Depends(get_coordinator),
):
    """Events attributed to an internal user, newest first."""
    events = await coordinator.list_by_attributed_user(
        user_id,
        platform=platform,
        event_type=event_type,
        start=_parse_bound(start_date, "startDate"),
        end=_parse_bound(end_date, "endDate"),
        limit=limit,
    )
    return EventList(data=[e.to_wire() for e in events])


@router.get("/owner/{owner_platform_id}", response_model=EventList)
async def list_owner_events(
    owner_platform_id: str,
    start_date: str | None = Query(default=None, alias="startDate"),
    end_date: str | None = Query(default=None, alias="endDate"),
    limit: int = Query(default=100, ge=1, le=1000),
    coordinator: IngestionCoordinator = Depends(get_coordinator),
):
    """Events on content owned by a platform account, newest first."""
    events = await coordinator.list_by_owner(
        owner_platform_id,
        start=_parse_bound(start_date, "startDate"),
        end=_parse_bound(end_date, "endDate"),
        limit=limit,
    )
    return EventList(data=[e.to_wire() for e in events])


@router.get("/actor/{platform}/{actor_id}", response_model=EventList)
async def list_actor_events(
    platform: Platform,
    actor_id: str,
    limit: int = Query(default=100, ge=1, le=1000),
    coordinator: IngestionCoordinator = Depends(get_coordinator),
):
    events = await coordinator.list_by_actor(actor_id, platform, limit=limit)
    return EventList(data=[e.to_wire() for e in events])


@router.get("/{event_id}")
async def get_event(event_id: str, coordinator: IngestionCoordinator = Depends(get_coordinator)):
    event = await coordinator.get(event_id)
    return event.to_wire()


@router.api_route("/{event_id}", methods=["PUT", "PATCH", "DELETE"])
async def mutate_event(
    event_id: str,
    request: Request,
    coordinator: IngestionCoordinator = Depends(get_coordinator),
):
    """Events are append-only; every mutation is refused."""
    logger.warning(f"Refused {request.method} on event {event_id}")
    if request.method == "DELETE":
        await coordinator.delete(event_id)
    else:
        await coordinator.update(event_id, {})
