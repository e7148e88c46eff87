"""Data models for scroblarr."""

from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class MediaStatus(str, Enum):
    """Playback status reported by a media server."""

    PLAYING = "playing"
    PAUSED = "paused"
    STOPPED = "stopped"
    SCROBBLE = "scrobble"


class MediaType(str, Enum):
    """Kinds of media that can be scrobbled."""

    MOVIE = "movie"
    EPISODE = "episode"


class MediaSource(str, Enum):
    """Media servers that produce playback events."""

    PLEX = "plex"
    JELLYFIN = "jellyfin"


class MediaIdentifiers(BaseModel):
    """Cross-reference ids of a media item, stringified."""

    tvdb_episode_id: str | None = None
    tvdb_movie_id: str | None = None
    imdb_episode_id: str | None = None
    imdb_movie_id: str | None = None
    tmdb_movie_id: str | None = None
    tmdb_series_id: str | None = None

    def item_level(self) -> dict[str, str]:
        """Non-empty ids that identify one single item.

        The TMDB series id is shared by every episode of a show, so it never
        identifies an item on its own.
        """
        ids = self.model_dump(exclude={"tmdb_series_id"})
        return {key: value for key, value in ids.items() if value}


def _stringify(value: object) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


class _MediaBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = ""
    title: str
    year: int | None = None
    duration: int | None = None  # ms
    watched_duration: int | None = None  # ms
    poster_url: str | None = None


class Movie(_MediaBase):
    """A movie."""

    type: Literal["movie"] = "movie"
    tvdb_movie_id: int | None = None
    imdb_movie_id: str | None = None
    tmdb_movie_id: int | None = None

    @property
    def media_type(self) -> MediaType:
        return MediaType.MOVIE

    def identifiers(self) -> MediaIdentifiers:
        return MediaIdentifiers(
            tvdb_movie_id=_stringify(self.tvdb_movie_id),
            imdb_movie_id=_stringify(self.imdb_movie_id),
            tmdb_movie_id=_stringify(self.tmdb_movie_id),
        )


class Episode(_MediaBase):
    """A TV episode. ``title`` is the show title."""

    type: Literal["episode"] = "episode"
    season_number: int | None = None
    episode_number: int | None = None
    episode_title: str | None = None
    tvdb_episode_id: int | None = None
    imdb_episode_id: str | None = None
    tmdb_series_id: int | None = None

    @property
    def media_type(self) -> MediaType:
        return MediaType.EPISODE

    def identifiers(self) -> MediaIdentifiers:
        return MediaIdentifiers(
            tvdb_episode_id=_stringify(self.tvdb_episode_id),
            imdb_episode_id=_stringify(self.imdb_episode_id),
            tmdb_series_id=_stringify(self.tmdb_series_id),
        )


MediaItem = Annotated[Movie | Episode, Field(discriminator="type")]


class NormalizedEvent(BaseModel):
    """Playback event already normalised by a media server webhook parser."""

    model_config = ConfigDict(frozen=True)

    status: MediaStatus
    media: MediaItem
    user_identity: str
    source: MediaSource
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    metadata: dict[str, Any] = Field(default_factory=dict)


class User(BaseModel):
    """Local account linking media server identities to destinations."""

    id: str
    plex_username: str | None = None
    jellyfin_username: str | None = None
    jellyfin_user_id: str | None = None  # stored without hyphens
    display_name: str | None = None
    email: str | None = None
    is_admin: bool = False
    enabled: bool = True

    jellyfin_access_token: str | None = None

    tvtime_access_token: str | None = None
    tvtime_refresh_token: str | None = None
    tvtime_email: str | None = None
    tvtime_password: str | None = None

    trakt_access_token: str | None = None
    trakt_refresh_token: str | None = None
    trakt_token_expires_at: datetime | None = None
    trakt_client_id: str | None = None
    trakt_client_secret: str | None = None

    mark_movies_as_rewatched: bool = False
    mark_episodes_as_rewatched: bool = False

    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def primary_username(self) -> str:
        return self.plex_username or self.jellyfin_username or "unknown"


class TokenPair(BaseModel):
    """Access/refresh credential pair returned by a destination's auth API."""

    access_token: str
    refresh_token: str
    expires_at: datetime | None = None


class SyncOptions(BaseModel):
    """Per-destination scrobble options."""

    mark_movies_as_rewatched: bool = False
    mark_episodes_as_rewatched: bool = False


class DestinationResult(BaseModel):
    """Outcome of dispatching one event to one destination."""

    destination: str
    success: bool
    error: str | None = None


class SyncHistoryEntry(BaseModel):
    """One recorded sync attempt."""

    id: int | None = None
    user_id: str
    media_type: MediaType
    media_title: str
    source: MediaSource | None = None

    tvdb_episode_id: str | None = None
    tvdb_movie_id: str | None = None
    imdb_episode_id: str | None = None
    imdb_movie_id: str | None = None
    tmdb_movie_id: str | None = None
    tmdb_series_id: str | None = None

    poster_url: str | None = None
    season_number: int | None = None
    episode_number: int | None = None
    year: int | None = None

    success: bool
    error_message: str | None = None
    was_rewatched: bool = False
    destinations: list[str] = Field(default_factory=list)

    synced_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def identifiers(self) -> MediaIdentifiers:
        return MediaIdentifiers.model_validate(self.model_dump(include=set(MediaIdentifiers.model_fields)))


class RefreshStatus(str, Enum):
    """Outcome kinds of a scheduled credential refresh."""

    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


class RefreshOutcome(BaseModel):
    """Refresh result for one (user, destination) pair."""

    user_id: str
    destination: str
    status: RefreshStatus
    reason: str | None = None
