"""Threads payload normalizer."""

from eventgateway.models.event import ContentType, EventType, Platform
from eventgateway.normalizers.base import BaseNormalizer, str_id


class ThreadsNormalizer(BaseNormalizer):
    platform = Platform.THREADS
    container_key = "post"

    ENGAGEMENT_TYPES = {
        "like": EventType.ENGAGEMENT,
        "reply": EventType.COMMENT,
        "repost": EventType.SHARE,
        "quote": EventType.SHARE,
        "follow": EventType.FOLLOW,
        "impression": EventType.IMPRESSION,
        "view": EventType.IMPRESSION,
    }

    CONTENT_TYPES = {
        "TEXT_POST": ContentType.POST,
        "IMAGE": ContentType.POST,
        "CAROUSEL_ALBUM": ContentType.POST,
        "VIDEO": ContentType.VIDEO,
    }

    def actor(self, user: dict) -> dict:
        return {
            "platform_user_id": str_id(user.get("id")),
            "username": user.get("username"),
            "display_name": user.get("name"),
            "avatar_url": user.get("profile_pic_url") or user.get("threads_profile_picture_url"),
        }

    def subject(self, post: dict) -> dict:
        return {
            "content_id": str_id(post.get("id")),
            "content_type": self.content_type(post.get("media_type")).value,
            "owner_platform_id": str_id(post.get("author_id")) or str_id(post.get("owner_id")),
        }

    def occurred_at(self, post: dict):
        return post.get("timestamp")

    def is_verified(self, user: dict) -> bool | None:
        verified = user.get("is_verified")
        return verified if isinstance(verified, bool) else None
