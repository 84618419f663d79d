"""Instagram Graph API payload normalizer."""

from eventgateway.models.event import ContentType, EventType, Platform
from eventgateway.normalizers.base import BaseNormalizer, str_id


class InstagramNormalizer(BaseNormalizer):
    platform = Platform.INSTAGRAM
    container_key = "media"

    ENGAGEMENT_TYPES = {
        "like": EventType.ENGAGEMENT,
        "comment": EventType.COMMENT,
        "mention": EventType.COMMENT,
        "save": EventType.SAVE,
        "share": EventType.SHARE,
        "follow": EventType.FOLLOW,
        "impression": EventType.IMPRESSION,
        "reach": EventType.IMPRESSION,
    }

    CONTENT_TYPES = {
        "IMAGE": ContentType.POST,
        "VIDEO": ContentType.VIDEO,
        "CAROUSEL_ALBUM": ContentType.POST,
        "REELS": ContentType.REEL,
        "STORY": ContentType.STORY,
    }

    def actor(self, user: dict) -> dict:
        return {
            "platform_user_id": str_id(user.get("id")),
            "username": user.get("username"),
            "display_name": user.get("full_name") or user.get("name"),
            "avatar_url": user.get("profile_picture") or user.get("profile_picture_url"),
        }

    def subject(self, media: dict) -> dict:
        owner = media.get("owner") if isinstance(media.get("owner"), dict) else {}
        # Graph API reports stories as media_product_type=STORY with media_type IMAGE/VIDEO
        raw_type = media.get("media_type")
        if media.get("media_product_type") in ("STORY", "REELS"):
            raw_type = media["media_product_type"]
        return {
            "content_id": str_id(media.get("id")),
            "content_type": self.content_type(raw_type).value,
            "owner_platform_id": str_id(owner.get("id")),
        }

    def occurred_at(self, media: dict):
        return media.get("timestamp")

    def is_verified(self, user: dict) -> bool | None:
        verified = user.get("is_verified")
        return verified if isinstance(verified, bool) else None
