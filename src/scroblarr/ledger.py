"""Bounded per-user history of sync attempts."""

import logging

from .config import HistoryConfig
from .database import Database
from .models import MediaIdentifiers, MediaType, SyncHistoryEntry

logger = logging.getLogger(__name__)

SYNC_HISTORY_LIMIT_SETTING = "syncHistoryLimit"


class HistoryLedger:
    """Append-only sync history with retention trimming and rewatch lookups."""

    def __init__(self, db: Database, config: HistoryConfig | None = None):
        self.db = db
        self.config = config or HistoryConfig()

    async def record(self, entry: SyncHistoryEntry) -> SyncHistoryEntry:
        """Append one entry. Persistence errors propagate to the caller."""
        return await self.db.add_sync_history(entry)

    async def has_prior_success(
        self,
        user_id: str,
        media_type: MediaType,
        identifiers: MediaIdentifiers,
    ) -> bool:
        """True if a successful entry of the same media type shares an item-level id.

        Without any id on the incoming item there is nothing to match, so a
        first play is never treated as a rewatch.
        """
        ids = identifiers.item_level()
        if not ids:
            return False
        return await self.db.has_successful_sync(user_id, media_type, ids)

    async def trim(self, user_id: str, cap: int) -> int:
        """Delete the user's oldest entries beyond ``cap``."""
        return await self.db.trim_sync_history(user_id, cap)

    async def history_limit(self) -> int:
        """Effective retention cap from the settings store.

        Falls back to the default when unset or unparseable and clamps to the
        configured bounds.
        """
        raw = await self.db.get_setting(SYNC_HISTORY_LIMIT_SETTING)
        if raw is None:
            return self.config.default_limit
        try:
            limit = int(raw.strip())
        except ValueError:
            logger.warning(
                "Invalid %s setting %r, using %d", SYNC_HISTORY_LIMIT_SETTING, raw, self.config.default_limit
            )
            return self.config.default_limit
        return min(max(limit, self.config.min_limit), self.config.max_limit)
