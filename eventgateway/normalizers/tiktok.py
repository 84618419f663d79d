"""TikTok payload normalizer."""

from eventgateway.models.event import ContentType, EventType, Platform
from eventgateway.normalizers.base import BaseNormalizer, duration_seconds, str_id


class TikTokNormalizer(BaseNormalizer):
    platform = Platform.TIKTOK
    container_key = "video"

    ENGAGEMENT_TYPES = {
        "like": EventType.ENGAGEMENT,
        "comment": EventType.COMMENT,
        "share": EventType.SHARE,
        "follow": EventType.FOLLOW,
        "view": EventType.IMPRESSION,
        "favorite": EventType.SAVE,
    }

    def actor(self, user: dict) -> dict:
        return {
            "platform_user_id": str_id(user.get("id")) or str_id(user.get("open_id")),
            "username": user.get("username") or user.get("unique_id"),
            "display_name": user.get("nickname") or user.get("display_name"),
            "avatar_url": user.get("avatar_url") or user.get("avatar_larger"),
        }

    def subject(self, video: dict) -> dict:
        author = video.get("author") if isinstance(video.get("author"), dict) else {}
        return {
            "content_id": str_id(video.get("id")),
            # every TikTok item is a video
            "content_type": ContentType.VIDEO.value,
            "owner_platform_id": str_id(video.get("author_id")) or str_id(author.get("id")),
        }

    def occurred_at(self, video: dict):
        return video.get("create_time")

    def duration(self, video: dict) -> float | None:
        return duration_seconds(video.get("duration"))
