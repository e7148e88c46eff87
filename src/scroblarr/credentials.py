"""Base class for per-destination access token resolution."""

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from .database import Database
from .errors import NotLinkedError
from .models import TokenPair, User

logger = logging.getLogger(__name__)

# Tokens expiring within this window are refreshed ahead of time
REFRESH_BUFFER = timedelta(minutes=5)


def utcnow() -> datetime:
    return datetime.now(UTC)


class CredentialResolver(ABC):
    """Returns a currently valid access token for a user, refreshing if needed."""

    destination: str = ""

    def __init__(self, db: Database, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    @abstractmethod
    async def get_valid_access_token(self, user_id: str) -> str:
        """Return a usable access token or raise a CredentialError."""

    @abstractmethod
    def _token_fields(self, tokens: TokenPair) -> dict[str, Any]:
        """Map a token pair onto the destination's user columns."""

    async def _load_user(self, user_id: str) -> User:
        user = await self.db.get_user(user_id)
        if user is None:
            raise NotLinkedError(self.destination, f"User {user_id} not found")
        return user

    def _is_fresh(self, expires_at: datetime | None) -> bool:
        if expires_at is None:
            return False
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        return self.clock() < expires_at - REFRESH_BUFFER

    async def _persist(self, user_id: str, tokens: TokenPair) -> None:
        """Store the new access token, refresh token and expiry in one update."""
        await self.db.update_user(user_id, **self._token_fields(tokens))
        logger.debug("[%s] Stored refreshed tokens for user %s", self.destination, user_id)
