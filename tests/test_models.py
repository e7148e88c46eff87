"""Tests for data models."""

from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from scroblarr.models import (
    Episode,
    MediaIdentifiers,
    MediaSource,
    MediaStatus,
    MediaType,
    Movie,
    NormalizedEvent,
    SyncHistoryEntry,
    User,
)


def test_enum_values():
    """Test enum wire values."""
    assert MediaStatus.SCROBBLE.value == "scrobble"
    assert MediaType.EPISODE.value == "episode"
    assert MediaSource.JELLYFIN.value == "jellyfin"


def test_episode_identifiers_are_strings():
    """Test numeric ids are stringified for matching."""
    episode = Episode(title="Show", tvdb_episode_id=555, tmdb_series_id=42, season_number=2, episode_number=4)
    ids = episode.identifiers()
    assert ids.tvdb_episode_id == "555"
    assert ids.tmdb_series_id == "42"
    assert ids.imdb_episode_id is None
    assert episode.media_type == MediaType.EPISODE


def test_movie_identifiers():
    """Test movie identifier set."""
    movie = Movie(title="Film", imdb_movie_id="tt0111161", tmdb_movie_id=278)
    ids = movie.identifiers()
    assert ids.imdb_movie_id == "tt0111161"
    assert ids.tmdb_movie_id == "278"
    assert ids.tvdb_episode_id is None
    assert movie.media_type == MediaType.MOVIE


def test_item_level_excludes_series_id():
    """Test the series id never counts as an item identifier."""
    ids = MediaIdentifiers(tvdb_episode_id="100", tmdb_series_id="42", imdb_episode_id="")
    assert ids.item_level() == {"tvdb_episode_id": "100"}


def test_item_level_empty():
    """Test an identifier set without ids."""
    assert MediaIdentifiers(tmdb_series_id="42").item_level() == {}


def test_normalized_event_discriminates_media():
    """Test the media union is resolved by its type tag."""
    event = NormalizedEvent.model_validate(
        {
            "status": "scrobble",
            "media": {"type": "episode", "title": "Show", "tvdb_episode_id": 555, "season_number": 2},
            "user_identity": "alice",
            "source": "plex",
        }
    )
    assert isinstance(event.media, Episode)
    assert event.media.season_number == 2
    assert event.timestamp.tzinfo is not None
    assert event.metadata == {}


def test_normalized_event_rejects_unknown_media_type():
    """Test unknown media kinds fail validation."""
    with pytest.raises(ValidationError):
        NormalizedEvent.model_validate(
            {
                "status": "scrobble",
                "media": {"type": "track", "title": "Song"},
                "user_identity": "alice",
                "source": "plex",
            }
        )


def test_media_is_frozen():
    """Test media items are immutable."""
    movie = Movie(title="Film")
    with pytest.raises(ValidationError):
        movie.title = "Other"


def test_user_defaults():
    """Test User default values."""
    user = User(id="u1", plex_username="alice")
    assert user.enabled is True
    assert user.mark_movies_as_rewatched is False
    assert user.mark_episodes_as_rewatched is False
    assert user.primary_username == "alice"


def test_user_primary_username_fallback():
    """Test primary username falls back through the identities."""
    assert User(id="u1", jellyfin_username="bob").primary_username == "bob"
    assert User(id="u2").primary_username == "unknown"


def test_sync_history_entry_identifiers():
    """Test history entries expose their identifier set."""
    entry = SyncHistoryEntry(
        user_id="u1",
        media_type=MediaType.EPISODE,
        media_title="Show",
        tvdb_episode_id="100",
        success=True,
        synced_at=datetime(2024, 1, 1, tzinfo=UTC),
    )
    assert entry.identifiers().item_level() == {"tvdb_episode_id": "100"}
    assert entry.destinations == []
    assert entry.was_rewatched is False
