"""Social Event Gateway - FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from eventgateway.config import Settings, settings as default_settings
from eventgateway.coordinator import IngestionCoordinator
from eventgateway.dependencies import verify_api_key
from eventgateway.directory import HttpUserDirectory, StaticUserDirectory, UserDirectory
from eventgateway.errors import EventGatewayError
from eventgateway.rollups import HttpRollupSink, InMemoryRollupSink, RollupQueue, RollupSink
from eventgateway.routers import events, webhooks
from eventgateway.store import EventStore, InMemoryEventStore, PostgresEventStore
from eventgateway.webhooks.verifier import build_verifiers

logger = logging.getLogger(__name__)


def _default_store(settings: Settings) -> EventStore:
    if settings.database_url:
        return PostgresEventStore(settings.database_url, settings.dedupe_raw_event_ids)
    logger.warning("DATABASE_URL not set, events are kept in memory only")
    return InMemoryEventStore(settings.dedupe_raw_event_ids)


def _default_directory(settings: Settings) -> UserDirectory:
    if settings.user_directory_url:
        return HttpUserDirectory(settings.user_directory_url, settings.user_directory_token)
    return StaticUserDirectory.from_seed(settings.user_directory_seed)


def _default_rollup_sink(settings: Settings) -> RollupSink:
    if settings.user_directory_url:
        return HttpRollupSink(settings.user_directory_url, settings.user_directory_token)
    return InMemoryRollupSink(max_tracked=settings.rollup_dedupe_window)


def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    loc = [str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path")]
    return JSONResponse(
        status_code=400,
        content={"field": ".".join(loc) or None, "message": first.get("msg", "Invalid request")},
    )


def _gateway_error_handler(request: Request, exc: EventGatewayError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app(
    settings: Settings | None = None,
    store: EventStore | None = None,
    directory: UserDirectory | None = None,
    rollup_sink: RollupSink | None = None,
) -> FastAPI:
    settings = settings or default_settings
    logging.basicConfig(level=logging.DEBUG if settings.debug else settings.log_level.upper())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        event_store = store if store is not None else _default_store(settings)
        user_directory = directory if directory is not None else _default_directory(settings)
        rollups = RollupQueue(
            rollup_sink if rollup_sink is not None else _default_rollup_sink(settings),
            maxsize=settings.rollup_queue_size,
            max_attempts=settings.rollup_max_attempts,
            retry_base_seconds=settings.rollup_retry_base_seconds,
        )
        rollups.start()

        app.state.store = event_store
        app.state.rollups = rollups
        app.state.verifiers = build_verifiers(settings)
        app.state.coordinator = IngestionCoordinator(event_store, user_directory, rollups, settings)
        logger.info("Event gateway ready")
        try:
            yield
        finally:
            await rollups.stop(drain_timeout=settings.rollup_drain_timeout_seconds)
            await user_directory.close()
            await event_store.close()

    app = FastAPI(
        title="Social Event Gateway",
        description="Canonical ingestion of social platform activity",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    # Rate limiting
    app.state.limiter = events.limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.add_exception_handler(EventGatewayError, _gateway_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)

    # Webhooks are called by the platforms themselves, so they stay public
    app.include_router(
        events.router, prefix="/events", tags=["events"], dependencies=[Depends(verify_api_key)]
    )
    app.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])

    return app


app = create_app()
