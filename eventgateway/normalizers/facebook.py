"""Facebook Graph API payload normalizer."""

from eventgateway.models.event import ContentType, EventType, Platform
from eventgateway.normalizers.base import BaseNormalizer, str_id


class FacebookNormalizer(BaseNormalizer):
    platform = Platform.FACEBOOK
    container_key = "post"

    ENGAGEMENT_TYPES = {
        "like": EventType.ENGAGEMENT,
        "reaction": EventType.ENGAGEMENT,
        "comment": EventType.COMMENT,
        "share": EventType.SHARE,
        "follow": EventType.FOLLOW,
        "impression": EventType.IMPRESSION,
        "click": EventType.CLICK,
    }

    CONTENT_TYPES = {
        "status": ContentType.POST,
        "photo": ContentType.POST,
        "link": ContentType.POST,
        "video": ContentType.VIDEO,
        "reel": ContentType.REEL,
        "story": ContentType.STORY,
    }

    def actor(self, user: dict) -> dict:
        picture = user.get("picture") if isinstance(user.get("picture"), dict) else {}
        picture_data = picture.get("data") if isinstance(picture.get("data"), dict) else {}
        return {
            "platform_user_id": str_id(user.get("id")),
            "username": user.get("username") or user.get("name"),
            "display_name": user.get("name"),
            "avatar_url": picture_data.get("url"),
        }

    def subject(self, post: dict) -> dict:
        author = post.get("from") if isinstance(post.get("from"), dict) else {}
        return {
            "content_id": str_id(post.get("id")),
            "content_type": self.content_type(post.get("type")).value,
            "owner_platform_id": str_id(author.get("id")),
        }

    def occurred_at(self, post: dict):
        return post.get("created_time")
