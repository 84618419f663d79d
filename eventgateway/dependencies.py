"""Shared FastAPI dependencies."""

import hmac

from fastapi import Header, HTTPException, Request

from eventgateway.config import Settings
from eventgateway.coordinator import IngestionCoordinator
from eventgateway.models.event import Platform
from eventgateway.webhooks.verifier import WebhookVerifier


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


async def verify_api_key(request: Request, x_api_key: str | None = Header(None)):
    """Require X-API-Key when API_KEY is configured."""
    api_key = get_settings(request).api_key
    if not api_key:
        return
    if not x_api_key or not hmac.compare_digest(x_api_key.encode(), api_key.encode()):
        raise HTTPException(status_code=401, detail="Invalid or missing API key")


def get_coordinator(request: Request) -> IngestionCoordinator:
    return request.app.state.coordinator


def get_verifiers(request: Request) -> dict[Platform, WebhookVerifier]:
    return request.app.state.verifiers
