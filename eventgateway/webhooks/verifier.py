"""Webhook verification - per-platform handshake and signature checks.

Each verifier is a two-phase state machine. A GET puts the call in the
AWAITING_VERIFICATION phase (subscription handshake), a POST in
AWAITING_NOTIFICATION (event delivery). Platforms without a handshake treat
every call as a notification. Verifiers only decide whether a call may proceed
to normalization; they never touch the event store.
"""

import base64
import hashlib
import hmac
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

from eventgateway.config import Settings
from eventgateway.models.event import Platform

TWITTER_SIGNATURE_HEADER = "x-twitter-webhooks-signature"
META_SIGNATURE_HEADER = "x-hub-signature-256"


class WebhookPhase(str, Enum):
    AWAITING_VERIFICATION = "awaiting_verification"
    AWAITING_NOTIFICATION = "awaiting_notification"


@dataclass(frozen=True)
class VerificationOutcome:
    proceed: bool
    status_code: int = 200
    # str -> plain text response, dict -> JSON response
    body: str | dict | None = None


def _hmac_sha256(secret: str, message: bytes) -> bytes:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).digest()


def twitter_crc_response(consumer_secret: str, crc_token: str) -> str:
    """Challenge-Response Check token: sha256=<base64 HMAC-SHA256 of the crc token>."""
    digest = _hmac_sha256(consumer_secret, crc_token.encode("utf-8"))
    return "sha256=" + base64.b64encode(digest).decode("ascii")


def meta_signature(app_secret: str, body: bytes) -> str:
    return "sha256=" + _hmac_sha256(app_secret, body).hex()


def _matches(expected: str, candidate: str | None) -> bool:
    return hmac.compare_digest(expected.encode("utf-8"), (candidate or "").encode("utf-8"))


_ACCEPT = VerificationOutcome(proceed=True)
_BAD_SIGNATURE = VerificationOutcome(proceed=False, status_code=403, body="Invalid signature")


class WebhookVerifier:
    """Verifier for a platform with no handshake and no signature."""

    has_handshake = False

    def __init__(self, platform: Platform):
        self.platform = platform

    def phase(self, method: str) -> WebhookPhase:
        if self.has_handshake and method.upper() == "GET":
            return WebhookPhase.AWAITING_VERIFICATION
        return WebhookPhase.AWAITING_NOTIFICATION

    def handle(self, method: str, query: Mapping, headers: Mapping, body: bytes = b"") -> VerificationOutcome:
        if self.phase(method) is WebhookPhase.AWAITING_VERIFICATION:
            return self.verify_handshake(query)
        return self.verify_notification(headers, body)

    def verify_handshake(self, query: Mapping) -> VerificationOutcome:
        return _ACCEPT

    def verify_notification(self, headers: Mapping, body: bytes) -> VerificationOutcome:
        return _ACCEPT


class MetaSignedVerifier(WebhookVerifier):
    """Facebook and Threads: no handshake here, optional X-Hub-Signature-256 check."""

    def __init__(self, platform: Platform, app_secret: str = "", verify_signatures: bool = False):
        super().__init__(platform)
        self.app_secret = app_secret
        self.verify_signatures = verify_signatures

    def verify_notification(self, headers: Mapping, body: bytes) -> VerificationOutcome:
        if not self.verify_signatures:
            return _ACCEPT
        if not self.app_secret:
            return VerificationOutcome(False, 503, "Webhook signing secret not configured")
        if not _matches(meta_signature(self.app_secret, body), headers.get(META_SIGNATURE_HEADER)):
            return _BAD_SIGNATURE
        return _ACCEPT


class InstagramVerifier(MetaSignedVerifier):
    """Graph API subscription: hub.verify_token must match the configured token."""

    has_handshake = True

    def __init__(self, verify_token: str, app_secret: str = "", verify_signatures: bool = False):
        super().__init__(Platform.INSTAGRAM, app_secret, verify_signatures)
        self.verify_token = verify_token

    def verify_handshake(self, query: Mapping) -> VerificationOutcome:
        mode = query.get("hub.mode")
        token = query.get("hub.verify_token")
        if self.verify_token and mode == "subscribe" and _matches(self.verify_token, token):
            return VerificationOutcome(True, 200, query.get("hub.challenge") or "")
        return VerificationOutcome(False, 403, "Forbidden")


class TwitterVerifier(WebhookVerifier):
    """Account Activity API: CRC on GET, optional signature header on POST."""

    has_handshake = True

    def __init__(self, consumer_secret: str, verify_signatures: bool = False):
        super().__init__(Platform.TWITTER)
        self.consumer_secret = consumer_secret
        self.verify_signatures = verify_signatures

    def verify_handshake(self, query: Mapping) -> VerificationOutcome:
        if not self.consumer_secret:
            return VerificationOutcome(False, 503, "Twitter consumer secret not configured")
        crc_token = query.get("crc_token")
        if not crc_token:
            return VerificationOutcome(False, 400, "Missing crc_token")
        return VerificationOutcome(
            True, 200, {"response_token": twitter_crc_response(self.consumer_secret, crc_token)}
        )

    def verify_notification(self, headers: Mapping, body: bytes) -> VerificationOutcome:
        if not self.verify_signatures:
            return _ACCEPT
        if not self.consumer_secret:
            return VerificationOutcome(False, 503, "Twitter consumer secret not configured")
        expected = "sha256=" + base64.b64encode(_hmac_sha256(self.consumer_secret, body)).decode("ascii")
        if not _matches(expected, headers.get(TWITTER_SIGNATURE_HEADER)):
            return _BAD_SIGNATURE
        return _ACCEPT


class YouTubeVerifier(WebhookVerifier):
    """PubSubHubbub: echo hub.challenge verbatim."""

    has_handshake = True

    def __init__(self):
        super().__init__(Platform.YOUTUBE)

    def verify_handshake(self, query: Mapping) -> VerificationOutcome:
        challenge = query.get("hub.challenge")
        if challenge is None:
            return VerificationOutcome(False, 400, "Missing hub.challenge")
        return VerificationOutcome(True, 200, challenge)


def build_verifiers(settings: Settings) -> dict[Platform, WebhookVerifier]:
    signed = settings.verify_webhook_signatures
    return {
        Platform.TWITTER: TwitterVerifier(settings.twitter_consumer_secret, signed),
        Platform.INSTAGRAM: InstagramVerifier(
            settings.instagram_verify_token, settings.meta_app_secret, signed
        ),
        Platform.YOUTUBE: YouTubeVerifier(),
        Platform.TIKTOK: WebhookVerifier(Platform.TIKTOK),
        Platform.FACEBOOK: MetaSignedVerifier(Platform.FACEBOOK, settings.meta_app_secret, signed),
        Platform.THREADS: MetaSignedVerifier(Platform.THREADS, settings.meta_app_secret, signed),
    }
