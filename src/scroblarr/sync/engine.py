"""Sync orchestrator relaying scrobble events to tracking services."""

import logging
from collections.abc import Callable

from ..config import Config, get_config
from ..database import Database
from ..jellyfin import JellyfinClient
from ..ledger import HistoryLedger
from ..models import (
    DestinationResult,
    Episode,
    MediaSource,
    MediaStatus,
    Movie,
    NormalizedEvent,
    SyncHistoryEntry,
    User,
)
from ..users import UserResolver
from .destinations import Destination, build_destinations, close_destinations

logger = logging.getLogger(__name__)

JELLYFIN_HOST_SETTING = "jellyfinHost"

DISABLED_REASON = "User account is disabled"
NO_DESTINATIONS_REASON = "No sync destinations configured"


class SyncEngine:
    """Processes one scrobble event end to end.

    Flow:
    1. Filter out anything that is not a completed movie or episode
    2. Resolve the local user (disabled users get a failed ledger entry)
    3. Dispatch to every linked destination, one after the other
    4. Record the aggregated outcome and trim the user's history
    """

    def __init__(
        self,
        db: Database,
        destinations: list[Destination] | None = None,
        ledger: HistoryLedger | None = None,
        resolver: UserResolver | None = None,
        config: Config | None = None,
        jellyfin_client_factory: Callable[[str], JellyfinClient] | None = None,
    ):
        self.db = db
        self.config = config or get_config()
        self.destinations = destinations if destinations is not None else build_destinations(db, self.config)
        self.ledger = ledger or HistoryLedger(db, self.config.history)
        self.resolver = resolver or UserResolver(db)
        self._jellyfin_client_factory = jellyfin_client_factory or (
            lambda base_url: JellyfinClient(base_url, self.config.http)
        )

    async def close(self) -> None:
        await close_destinations(self.destinations)

    def linked_destinations(self, user: User) -> list[Destination]:
        """Destinations the user holds credentials for, in dispatch order."""
        return [d for d in self.destinations if d.is_linked_for(user)]

    async def sync_event(self, event: NormalizedEvent) -> SyncHistoryEntry | None:
        """Relay a scrobble event to the user's linked destinations.

        Returns the recorded ledger entry, or None when the event was ignored
        or its user could not be resolved. Destination failures are recorded,
        not raised.
        """
        media = event.media
        if event.status != MediaStatus.SCROBBLE or not isinstance(media, Movie | Episode):
            return None

        user = await self.resolver.resolve(event.source, event.user_identity)
        if user is None:
            logger.error(
                "[%s] No user found for identity %s, check the user's %s mapping",
                event.source.value,
                event.user_identity,
                event.source.value,
            )
            return None

        if not user.enabled:
            logger.warning("[%s] User %s is disabled, skipping sync of %s", event.source.value, user.id, media.title)
            return await self._record(user, event, self._build_entry(user, event, False, DISABLED_REASON, [], False))

        destinations = self.linked_destinations(user)
        if not destinations:
            logger.warning(
                "[%s] User %s has no linked destinations, skipping %s", event.source.value, user.id, media.title
            )
            entry = self._build_entry(user, event, False, NO_DESTINATIONS_REASON, [], False)
            return await self._record(user, event, entry)

        has_prior_sync = await self.ledger.has_prior_success(user.id, media.media_type, media.identifiers())

        results: list[DestinationResult] = []
        for destination in destinations:
            try:
                await destination.scrobble(user, event, has_prior_sync)
                results.append(DestinationResult(destination=destination.name, success=True))
                logger.info("[%s] Synced %s for user %s", destination.name, media.title, user.id)
            except Exception as e:
                results.append(DestinationResult(destination=destination.name, success=False, error=str(e)))
                logger.error("[%s] Failed to sync %s for user %s: %s", destination.name, media.title, user.id, e)

        succeeded = [r.destination for r in results if r.success]
        failures = [f"{r.destination}: {r.error}" for r in results if not r.success]
        rewatch_policy = user.mark_movies_as_rewatched if isinstance(media, Movie) else user.mark_episodes_as_rewatched

        entry = self._build_entry(
            user,
            event,
            success=bool(succeeded),
            error_message="; ".join(failures) or None,
            destinations=succeeded,
            was_rewatched=rewatch_policy and has_prior_sync,
        )
        return await self._record(user, event, entry)

    def _build_entry(
        self,
        user: User,
        event: NormalizedEvent,
        success: bool,
        error_message: str | None,
        destinations: list[str],
        was_rewatched: bool,
    ) -> SyncHistoryEntry:
        media = event.media
        episode = media if isinstance(media, Episode) else None
        return SyncHistoryEntry(
            user_id=user.id,
            media_type=media.media_type,
            media_title=media.title,
            source=event.source,
            **media.identifiers().model_dump(),
            poster_url=media.poster_url,
            season_number=episode.season_number if episode else None,
            episode_number=episode.episode_number if episode else None,
            year=media.year,
            success=success,
            error_message=error_message,
            was_rewatched=was_rewatched,
            destinations=destinations,
        )

    async def _season_poster_url(self, user: User, event: NormalizedEvent) -> str | None:
        """Season-level poster for Jellyfin episodes, or None to keep the event's own."""
        media = event.media
        if event.source != MediaSource.JELLYFIN or not isinstance(media, Episode):
            return None
        item_id = event.metadata.get("itemId")
        if not item_id or media.season_number is None or not user.jellyfin_access_token:
            return None

        try:
            host = await self.db.get_setting(JELLYFIN_HOST_SETTING)
            if not host:
                return None
            client = self._jellyfin_client_factory(host)
            try:
                return await client.get_season_poster_url(
                    user.jellyfin_access_token, str(item_id), media.season_number
                )
            finally:
                await client.close()
        except Exception as e:
            logger.debug("Season poster lookup failed for item %s: %s", item_id, e)
            return None

    async def _record(self, user: User, event: NormalizedEvent, entry: SyncHistoryEntry) -> SyncHistoryEntry:
        """Enrich, persist and trim. A failure here is logged, never raised."""
        poster_url = await self._season_poster_url(user, event)
        if poster_url:
            entry.poster_url = poster_url

        try:
            entry = await self.ledger.record(entry)
            await self.ledger.trim(entry.user_id, await self.ledger.history_limit())
        except Exception as e:
            logger.error(
                "Failed to record sync history for user %s (%s), data loss risk: %s",
                entry.user_id,
                entry.media_title,
                e,
            )
        return entry
