"""
Platform Normalizers

One adapter per source platform, all sharing the BaseNormalizer interface.
"""

from eventgateway.errors import NormalizationError
from eventgateway.models.event import EventSource, Platform

from .base import BaseNormalizer
from .facebook import FacebookNormalizer
from .instagram import InstagramNormalizer
from .threads import ThreadsNormalizer
from .tiktok import TikTokNormalizer
from .twitter import TwitterNormalizer
from .youtube import YouTubeNormalizer

NORMALIZERS: dict[Platform, BaseNormalizer] = {
    Platform.TWITTER: TwitterNormalizer(),
    Platform.INSTAGRAM: InstagramNormalizer(),
    Platform.YOUTUBE: YouTubeNormalizer(),
    Platform.TIKTOK: TikTokNormalizer(),
    Platform.FACEBOOK: FacebookNormalizer(),
    Platform.THREADS: ThreadsNormalizer(),
}


def get_normalizer(platform: Platform | str) -> BaseNormalizer:
    try:
        return NORMALIZERS[Platform(platform)]
    except ValueError:
        raise NormalizationError(f"Unsupported platform: {platform}", field="platform")


def normalize(platform: Platform | str, raw: dict, source: EventSource = EventSource.API) -> dict:
    return get_normalizer(platform).normalize(raw, source=source)


__all__ = [
    "BaseNormalizer",
    "FacebookNormalizer",
    "InstagramNormalizer",
    "NORMALIZERS",
    "ThreadsNormalizer",
    "TikTokNormalizer",
    "TwitterNormalizer",
    "YouTubeNormalizer",
    "get_normalizer",
    "normalize",
]
