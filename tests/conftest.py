"""
Shared pytest fixtures for the event gateway test suite.
"""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from eventgateway.config import Settings
from eventgateway.coordinator import IngestionCoordinator
from eventgateway.directory import StaticUserDirectory
from eventgateway.main import create_app
from eventgateway.models.event import Platform
from eventgateway.rollups import InMemoryRollupSink
from eventgateway.routers.events import limiter
from eventgateway.store import InMemoryEventStore

TWITTER_SECRET = "tw-consumer-secret"
INSTAGRAM_TOKEN = "ig-verify-token"
META_SECRET = "meta-app-secret"


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        api_key="",
        twitter_consumer_secret=TWITTER_SECRET,
        instagram_verify_token=INSTAGRAM_TOKEN,
        meta_app_secret=META_SECRET,
        database_url="",
        user_directory_url="",
        attribution_timeout_seconds=0.2,
        rollup_retry_base_seconds=0.01,
    )


@pytest.fixture
def make_draft():
    """
    Return a function that builds valid canonical drafts.

    Any top-level field can be overridden via keyword arguments.

    Example:
        draft = make_draft(type="comment", platform="instagram")
    """

    def _make_draft(**overrides) -> dict:
        draft = {
            "type": "engagement",
            "platform": "twitter",
            "actor": {
                "platform_user_id": "tw_12345",
                "username": "johndoe",
                "display_name": "John Doe",
            },
            "subject": {
                "content_id": "tweet_67890",
                "content_type": "post",
                "owner_platform_id": "creator_11111",
            },
            "metrics": {"count": 1},
            "metadata": {"source": "api", "is_verified": False},
            "timestamp": (datetime.now(timezone.utc) - timedelta(minutes=5)).isoformat(),
        }
        draft.update(overrides)
        return draft

    return _make_draft


@pytest.fixture
def store():
    return InMemoryEventStore()


@pytest.fixture
def directory():
    return StaticUserDirectory({(Platform.TWITTER, "creator_11111"): "user_1"})


@pytest.fixture
def rollup_sink():
    return InMemoryRollupSink()


@pytest.fixture
def coordinator(store, directory, settings):
    return IngestionCoordinator(store, directory, rollups=None, settings=settings)


@pytest.fixture
def client(settings, store, directory, rollup_sink):
    limiter.reset()
    app = create_app(settings=settings, store=store, directory=directory, rollup_sink=rollup_sink)
    with TestClient(app) as c:
        yield c
