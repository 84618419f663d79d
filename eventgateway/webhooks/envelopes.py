"""Unwraps platform webhook deliveries into raw payloads the normalizers understand.

A single delivery can carry several activity records (Instagram batches
``entry[].changes[]``, Twitter groups by event kind). Each record becomes one
raw payload in the same shape an API pull would produce.
"""

import json
import logging
import xml.etree.ElementTree as ET

from eventgateway.errors import NormalizationError
from eventgateway.models.event import Platform

logger = logging.getLogger(__name__)

_ATOM_NS = {
    "atom": "http://www.w3.org/2005/Atom",
    "yt": "http://www.youtube.com/xml/schemas/2015",
}

# Instagram Graph subscription field -> engagement type
_INSTAGRAM_FIELDS = {
    "likes": "like",
    "comments": "comment",
    "live_comments": "comment",
    "mentions": "mention",
    "follows": "follow",
    "story_insights": "impression",
}

_TWITTER_ACTIVITY_KEYS = ("favorite_events", "follow_events", "tweet_create_events")


def _dict(value) -> dict:
    return value if isinstance(value, dict) else {}


def _list(value) -> list:
    return value if isinstance(value, list) else []


def _instagram(body: dict) -> list[dict]:
    payloads = []
    for entry in _list(body.get("entry")):
        entry = _dict(entry)
        owner_id = entry.get("id")
        for change in _list(entry.get("changes")):
            change = _dict(change)
            value = _dict(change.get("value"))
            media = _dict(value.get("media"))
            actor = _dict(value.get("from"))
            payloads.append({
                "engagement_type": _INSTAGRAM_FIELDS.get(change.get("field"), change.get("field")),
                "event_id": value.get("id"),
                "timestamp": value.get("created_time") or entry.get("time"),
                "media": {
                    "id": media.get("id") or value.get("media_id") or owner_id,
                    "media_type": value.get("media_type"),
                    "media_product_type": media.get("media_product_type"),
                    "owner": {"id": owner_id},
                },
                "user": {"id": actor.get("id"), "username": actor.get("username")},
            })
    return payloads


def _twitter_tweet_activity(tweet: dict) -> dict | None:
    """Replies, retweets and quotes of someone else's tweet. Plain posts are skipped."""
    base = {
        "event_id": tweet.get("id_str") or tweet.get("id"),
        "timestamp": tweet.get("timestamp_ms") or tweet.get("created_at"),
        "user": _dict(tweet.get("user")),
    }
    if isinstance(tweet.get("retweeted_status"), dict):
        return {**base, "engagement_type": "retweet", "tweet": tweet["retweeted_status"]}
    if isinstance(tweet.get("quoted_status"), dict):
        return {**base, "engagement_type": "quote", "tweet": tweet["quoted_status"]}
    if tweet.get("in_reply_to_status_id_str"):
        return {
            **base,
            "engagement_type": "reply",
            "tweet": {
                "id_str": tweet["in_reply_to_status_id_str"],
                "author_id": tweet.get("in_reply_to_user_id_str"),
            },
        }
    return None


def _twitter(body: dict) -> list[dict]:
    payloads = []
    for event in _list(body.get("favorite_events")):
        event = _dict(event)
        payloads.append({
            "engagement_type": "like",
            "event_id": event.get("id"),
            "timestamp": event.get("timestamp_ms") or event.get("created_at"),
            "tweet": _dict(event.get("favorited_status")),
            "user": _dict(event.get("user")),
        })
    for event in _list(body.get("follow_events")):
        event = _dict(event)
        if event.get("type") != "follow":
            continue
        target = _dict(event.get("target"))
        payloads.append({
            "engagement_type": "follow",
            "timestamp": event.get("created_timestamp"),
            "tweet": {"id": target.get("id"), "author_id": target.get("id"), "kind": "profile"},
            "user": _dict(event.get("source")),
        })
    for tweet in _list(body.get("tweet_create_events")):
        activity = _twitter_tweet_activity(_dict(tweet))
        if activity is not None:
            payloads.append(activity)
    return payloads


def _youtube_atom(text: str) -> list[dict]:
    try:
        root = ET.fromstring(text)
    except ET.ParseError as e:
        raise NormalizationError(f"Malformed YouTube feed: {e}") from e

    payloads = []
    for entry in root.findall("atom:entry", _ATOM_NS):
        video_id = entry.findtext("yt:videoId", None, _ATOM_NS)
        channel_id = entry.findtext("yt:channelId", None, _ATOM_NS)
        payloads.append(_youtube_payload({
            "videoId": video_id,
            "channelId": channel_id,
            "channelTitle": entry.findtext("atom:author/atom:name", None, _ATOM_NS),
            "updated": entry.findtext("atom:updated", None, _ATOM_NS),
            "action": "new_video",
        }))
    return payloads


def _youtube_payload(notification: dict) -> dict:
    channel_id = notification.get("channelId")
    return {
        "engagement_type": "view",
        "event_id": notification.get("videoId"),
        "timestamp": notification.get("updated"),
        "video": {"id": notification.get("videoId"), "channelId": channel_id},
        "user": {"id": channel_id, "channelTitle": notification.get("channelTitle")},
    }


def parse_body(body: bytes, content_type: str = "") -> dict | str:
    """JSON bodies become dicts; XML bodies are returned as text."""
    text = body.decode("utf-8", errors="replace").strip()
    if "xml" in content_type or text.startswith("<"):
        return text
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        raise NormalizationError(f"Webhook body is not valid JSON: {e}") from e
    if not isinstance(parsed, dict):
        raise NormalizationError("Webhook body must be a JSON object")
    return parsed


def unpack_notification(platform: Platform, body: dict | str) -> list[dict]:
    """Split one webhook delivery into raw per-activity payloads."""
    platform = Platform(platform)

    if isinstance(body, str):
        if platform is Platform.YOUTUBE:
            return _youtube_atom(body)
        raise NormalizationError(f"{platform.value} webhooks must be JSON")

    if platform is Platform.INSTAGRAM and body.get("object") == "instagram":
        return _instagram(body)
    if platform is Platform.TWITTER and any(k in body for k in _TWITTER_ACTIVITY_KEYS):
        return _twitter(body)
    if platform is Platform.TWITTER and "for_user_id" in body:
        logger.debug("Ignoring Twitter activity with no engagement events")
        return []
    if platform is Platform.YOUTUBE and "videoId" in body:
        return [_youtube_payload(body)]
    if isinstance(body.get("events"), list):
        return [_dict(item) for item in body["events"]]
    return [body]
