"""User directory client - resolves a platform account id to an internal user."""

import logging
from abc import ABC, abstractmethod

import httpx

from eventgateway.models.event import Platform

logger = logging.getLogger(__name__)

_TIMEOUT = 2.0


class UserDirectory(ABC):
    @abstractmethod
    async def lookup(self, platform: Platform, platform_user_id: str) -> str | None:
        """Return the internal user id owning this platform account, or None."""
        pass

    async def close(self) -> None:
        pass


class StaticUserDirectory(UserDirectory):
    """In-process map of (platform, platform id) -> user id."""

    def __init__(self, entries: dict[tuple[Platform, str], str] | None = None):
        self._entries = dict(entries or {})

    @classmethod
    def from_seed(cls, seed: str) -> "StaticUserDirectory":
        """Parse 'twitter:123=user_1,instagram:o1=user_2'."""
        directory = cls()
        for pair in filter(None, (p.strip() for p in seed.split(","))):
            account, _, user_id = pair.partition("=")
            platform, _, platform_id = account.partition(":")
            if not (platform_id and user_id):
                logger.warning(f"Ignoring malformed user directory seed entry: {pair!r}")
                continue
            try:
                directory.register(platform.strip(), platform_id.strip(), user_id.strip())
            except ValueError:
                logger.warning(f"Ignoring seed entry for unknown platform: {pair!r}")
        return directory

    def register(self, platform: Platform, platform_user_id: str, user_id: str) -> None:
        """Map one platform account to a user, replacing any earlier owner."""
        self._entries[(Platform(platform), platform_user_id)] = user_id

    async def lookup(self, platform: Platform, platform_user_id: str) -> str | None:
        return self._entries.get((Platform(platform), platform_user_id))


class HttpUserDirectory(UserDirectory):
    """Looks users up through the account service's HTTP API."""

    def __init__(self, base_url: str, token: str = "", timeout: float = _TIMEOUT):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self._client = httpx.AsyncClient(timeout=timeout)

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.token}"} if self.token else {}

    async def lookup(self, platform: Platform, platform_user_id: str) -> str | None:
        response = await self._client.get(
            f"{self.base_url}/users/lookup",
            params={"platform": Platform(platform).value, "platform_id": platform_user_id},
            headers=self._headers(),
        )
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json().get("user_id")

    async def close(self) -> None:
        await self._client.aclose()
