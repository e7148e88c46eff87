"""Resolution of media server identities to local users."""

import logging

from .database import Database
from .models import MediaSource, User

logger = logging.getLogger(__name__)


def normalize_jellyfin_user_id(user_id: str) -> str:
    """Jellyfin ids arrive hyphenated from some callers; records store them bare."""
    return user_id.replace("-", "")


class UserResolver:
    """Maps the identity carried by a playback event to a local user.

    Disabled users are returned too; deciding what to do with them is the
    caller's job.
    """

    def __init__(self, db: Database):
        self.db = db

    async def resolve(self, source: MediaSource, identity: str) -> User | None:
        """Find the local user for a source identity, or None if unmapped."""
        if not identity:
            return None

        if source == MediaSource.JELLYFIN:
            user = await self.db.find_user_by_jellyfin_user_id(normalize_jellyfin_user_id(identity), enabled_only=False)
        elif source == MediaSource.PLEX:
            user = await self.db.find_user_by_plex_username(identity, enabled_only=False)
        else:
            user = None

        if user is None:
            logger.debug("[%s] No local user for identity %s", source.value, identity)
        return user
