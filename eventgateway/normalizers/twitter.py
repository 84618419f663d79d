"""Twitter/X payload normalizer."""

from eventgateway.models.event import ContentType, EventType, Platform
from eventgateway.normalizers.base import BaseNormalizer, str_id


class TwitterNormalizer(BaseNormalizer):
    platform = Platform.TWITTER
    container_key = "tweet"

    ENGAGEMENT_TYPES = {
        "like": EventType.ENGAGEMENT,
        "favorite": EventType.ENGAGEMENT,
        "retweet": EventType.SHARE,
        "quote": EventType.SHARE,
        "reply": EventType.COMMENT,
        "bookmark": EventType.SAVE,
        "follow": EventType.FOLLOW,
        "impression": EventType.IMPRESSION,
        "click": EventType.CLICK,
    }

    CONTENT_TYPES = {
        "tweet": ContentType.POST,
        "video": ContentType.VIDEO,
        "profile": ContentType.PROFILE,
    }

    def actor(self, user: dict) -> dict:
        return {
            "platform_user_id": str_id(user.get("id_str")) or str_id(user.get("id")),
            "username": user.get("screen_name") or user.get("username"),
            "display_name": user.get("name"),
            "avatar_url": user.get("profile_image_url_https") or user.get("profile_image_url"),
        }

    def subject(self, tweet: dict) -> dict:
        author = tweet.get("user") if isinstance(tweet.get("user"), dict) else {}
        return {
            "content_id": str_id(tweet.get("id_str")) or str_id(tweet.get("id")),
            "content_type": self.content_type(tweet.get("kind")).value,
            "owner_platform_id": (
                str_id(tweet.get("author_id"))
                or str_id(author.get("id_str"))
                or str_id(author.get("id"))
            ),
        }

    def occurred_at(self, tweet: dict):
        return tweet.get("created_at")

    def is_verified(self, user: dict) -> bool | None:
        verified = user.get("verified")
        return verified if isinstance(verified, bool) else None
