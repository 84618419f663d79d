"""Webhook endpoints - platform handshakes and notification ingestion.

Notifications are always acknowledged with 200 once they pass verification.
Processing failures are logged, never surfaced, so platforms don't redeliver.
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from eventgateway.coordinator import IngestionCoordinator
from eventgateway.dependencies import get_coordinator, get_verifiers
from eventgateway.errors import EventGatewayError
from eventgateway.models.event import EventSource, Platform
from eventgateway.normalizers import normalize
from eventgateway.webhooks.envelopes import parse_body, unpack_notification
from eventgateway.webhooks.verifier import VerificationOutcome, WebhookVerifier

logger = logging.getLogger(__name__)
router = APIRouter()


def _respond(outcome: VerificationOutcome) -> Response:
    if isinstance(outcome.body, dict):
        return JSONResponse(outcome.body, status_code=outcome.status_code)
    return PlainTextResponse(outcome.body if outcome.body is not None else "OK", status_code=outcome.status_code)


@router.get("/{platform}")
async def verify_webhook(
    platform: Platform,
    request: Request,
    verifiers: dict[Platform, WebhookVerifier] = Depends(get_verifiers),
):
    """Subscription handshake (CRC, verify token, hub challenge)."""
    outcome = verifiers[platform].handle("GET", request.query_params, request.headers)
    if not outcome.proceed:
        logger.warning(f"{platform.value} webhook verification rejected ({outcome.status_code})")
    return _respond(outcome)


@router.post("/{platform}")
async def receive_webhook(
    platform: Platform,
    request: Request,
    verifiers: dict[Platform, WebhookVerifier] = Depends(get_verifiers),
    coordinator: IngestionCoordinator = Depends(get_coordinator),
):
    """Normalize and ingest every activity record in a delivery."""
    body = await request.body()
    outcome = verifiers[platform].handle("POST", request.query_params, request.headers, body)
    if not outcome.proceed:
        logger.warning(f"{platform.value} webhook notification rejected ({outcome.status_code})")
        return _respond(outcome)

    accepted, failed = 0, 0
    try:
        payloads = unpack_notification(platform, parse_body(body, request.headers.get("content-type", "")))
    except EventGatewayError as e:
        logger.warning(f"Unreadable {platform.value} webhook delivery: {e.message}")
        payloads = []

    for raw in payloads:
        try:
            draft = normalize(platform, raw, source=EventSource.WEBHOOK)
            await coordinator.ingest_one(draft)
            accepted += 1
        except EventGatewayError as e:
            failed += 1
            logger.warning(f"Dropped {platform.value} webhook event ({e.field or 'event'}): {e.message}")
        except Exception:
            failed += 1
            logger.exception(f"{platform.value} webhook processing failed")

    return {"status": "received", "accepted": accepted, "failed": failed}
