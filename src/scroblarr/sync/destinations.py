"""Fixed, ordered set of scrobble destinations."""

import logging
from abc import ABC, abstractmethod
from typing import Protocol

from ..config import Config
from ..credentials import CredentialResolver
from ..database import Database
from ..models import NormalizedEvent, SyncOptions, User
from ..trakt import TraktClient, TraktTokenManager
from ..tvtime import TVTimeAuth, TVTimeClient, TVTimeTokenManager

logger = logging.getLogger(__name__)


class ScrobbleClient(Protocol):
    """Capability implemented once per destination API."""

    async def scrobble(self, event: NormalizedEvent, access_token: str, options: SyncOptions | None = None) -> None:
        """Mark the event's media as watched or raise a ScrobbleError."""
        ...


class Destination(ABC):
    """A tracking service a user may be linked to."""

    name: str = ""

    def __init__(self, credentials: CredentialResolver):
        self.credentials = credentials

    @abstractmethod
    def is_linked_for(self, user: User) -> bool:
        """Whether the user has the stored credentials this destination needs."""

    @abstractmethod
    def client_for(self, user: User) -> ScrobbleClient:
        """Adapter instance to use for this user."""

    def sync_options(self, user: User, has_prior_sync: bool) -> SyncOptions:
        """Rewatch flags: the user's policy, applied only to media synced before."""
        return SyncOptions(
            mark_movies_as_rewatched=user.mark_movies_as_rewatched and has_prior_sync,
            mark_episodes_as_rewatched=user.mark_episodes_as_rewatched and has_prior_sync,
        )

    async def scrobble(self, user: User, event: NormalizedEvent, has_prior_sync: bool) -> None:
        """Acquire a token, compute options and call the adapter."""
        access_token = await self.credentials.get_valid_access_token(user.id)
        options = self.sync_options(user, has_prior_sync)
        await self.client_for(user).scrobble(event, access_token, options)

    async def close(self) -> None:
        """Release HTTP resources."""


class TVTimeDestination(Destination):
    name = "TVTime"

    def __init__(self, credentials: TVTimeTokenManager, client: TVTimeClient):
        super().__init__(credentials)
        self.client = client

    def is_linked_for(self, user: User) -> bool:
        return bool(user.tvtime_access_token)

    def client_for(self, user: User) -> ScrobbleClient:
        return self.client

    async def close(self) -> None:
        await self.client.close()
        if isinstance(self.credentials, TVTimeTokenManager):
            await self.credentials.auth.close()


class TraktDestination(Destination):
    name = "Trakt"

    def __init__(self, credentials: TraktTokenManager, config: Config | None = None):
        super().__init__(credentials)
        self.config = config or Config()
        self._clients: dict[str, TraktClient] = {}

    def is_linked_for(self, user: User) -> bool:
        return bool(user.trakt_client_id and user.trakt_client_secret and user.trakt_access_token)

    def client_for(self, user: User) -> ScrobbleClient:
        """Trakt clients are keyed by the user's own application client id."""
        assert user.trakt_client_id is not None
        if user.trakt_client_id not in self._clients:
            self._clients[user.trakt_client_id] = TraktClient(user.trakt_client_id, self.config.trakt, self.config.http)
        return self._clients[user.trakt_client_id]

    def sync_options(self, user: User, has_prior_sync: bool) -> SyncOptions:
        # Every Trakt scrobble adds a play; there is nothing to flag
        return SyncOptions()

    async def close(self) -> None:
        for client in self._clients.values():
            await client.close()
        self._clients.clear()


def build_destinations(db: Database, config: Config | None = None) -> list[Destination]:
    """Default destinations in dispatch order."""
    config = config or Config()
    tvtime_auth = TVTimeAuth(config.tvtime, config.http)
    return [
        TVTimeDestination(
            TVTimeTokenManager(db, tvtime_auth),
            TVTimeClient(config.tvtime, config.http),
        ),
        TraktDestination(TraktTokenManager(db, config.trakt, config.http), config),
    ]


async def close_destinations(destinations: list[Destination]) -> None:
    """Close HTTP clients owned by the destinations."""
    for destination in destinations:
        await destination.close()
