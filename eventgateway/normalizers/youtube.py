"""YouTube Data API payload normalizer."""

from eventgateway.models.event import ContentType, EventType, Platform
from eventgateway.normalizers.base import BaseNormalizer, duration_seconds, str_id

SHORT_MAX_SECONDS = 60


class YouTubeNormalizer(BaseNormalizer):
    platform = Platform.YOUTUBE
    container_key = "video"

    ENGAGEMENT_TYPES = {
        "like": EventType.ENGAGEMENT,
        "comment": EventType.COMMENT,
        "share": EventType.SHARE,
        "subscribe": EventType.FOLLOW,
        "view": EventType.IMPRESSION,
        "impression": EventType.IMPRESSION,
    }

    CONTENT_TYPES = {
        "video": ContentType.VIDEO,
        "short": ContentType.SHORT,
        "channel": ContentType.PROFILE,
    }

    def actor(self, user: dict) -> dict:
        thumbnails = user.get("thumbnails") if isinstance(user.get("thumbnails"), dict) else {}
        default_thumb = thumbnails.get("default") if isinstance(thumbnails.get("default"), dict) else {}
        return {
            "platform_user_id": str_id(user.get("id")),
            "username": user.get("username") or user.get("channelTitle"),
            "display_name": user.get("channelTitle"),
            "avatar_url": default_thumb.get("url"),
        }

    def _video_content_type(self, video: dict) -> str:
        kind = video.get("kind")
        if isinstance(kind, str) and kind in self.CONTENT_TYPES:
            return self.CONTENT_TYPES[kind].value
        seconds = self.duration(video)
        if seconds is not None and seconds <= SHORT_MAX_SECONDS:
            return ContentType.SHORT.value
        return ContentType.VIDEO.value

    def subject(self, video: dict) -> dict:
        return {
            "content_id": str_id(video.get("id")),
            "content_type": self._video_content_type(video),
            "owner_platform_id": str_id(video.get("channelId")),
        }

    def occurred_at(self, video: dict):
        return video.get("publishedAt")

    def duration(self, video: dict) -> float | None:
        return duration_seconds(video.get("duration"))
