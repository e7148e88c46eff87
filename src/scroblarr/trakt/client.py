"""Trakt scrobble client."""

import logging
from typing import Any

from ..config import HttpConfig, TraktConfig
from ..errors import MissingIdentifiersError, RemoteError, UnsupportedMediaError, extract_error_message
from ..http import AsyncHttpClient
from ..models import Episode, Movie, NormalizedEvent, SyncOptions

logger = logging.getLogger(__name__)


class TraktClient(AsyncHttpClient):
    """Marks movies and episodes as watched on Trakt via ``/scrobble/stop``.

    Trakt has no rewatch flag; every stop at 100% adds a play, so the
    rewatch options are ignored.
    """

    name = "Trakt"

    def __init__(self, client_id: str, config: TraktConfig | None = None, http: HttpConfig | None = None):
        super().__init__(http)
        self.client_id = client_id
        self.config = config or TraktConfig()

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "trakt-api-version": "2",
            "trakt-api-key": self.client_id,
            "User-Agent": self.config.user_agent,
        }

    async def scrobble(self, event: NormalizedEvent, access_token: str, options: SyncOptions | None = None) -> None:
        media = event.media
        if isinstance(media, Episode):
            payload = self._episode_payload(media)
        elif isinstance(media, Movie):
            payload = self._movie_payload(media)
        else:
            raise UnsupportedMediaError(f"Unsupported media type: {getattr(media, 'type', media)}")

        await self._stop(payload, access_token, media.title)

    def _episode_payload(self, media: Episode) -> dict[str, Any]:
        episode: dict[str, Any] = {}
        if media.tvdb_episode_id:
            episode["ids"] = {"tvdb": media.tvdb_episode_id}
        elif media.imdb_episode_id:
            episode["ids"] = {"imdb": media.imdb_episode_id}

        if media.season_number is not None and media.episode_number is not None:
            episode["season"] = media.season_number
            episode["number"] = media.episode_number

        if "ids" not in episode and "season" not in episode:
            raise MissingIdentifiersError("Episode requires at least TVDB ID, IMDB ID, or season/episode numbers")

        if not media.title:
            raise MissingIdentifiersError("Show title is required for episode scrobble")

        show: dict[str, Any] = {"title": media.title}
        if media.year:
            show["year"] = media.year
        if media.tmdb_series_id:
            show["ids"] = {"tmdb": media.tmdb_series_id}

        return {"episode": episode, "show": show, "progress": 100}

    def _movie_payload(self, media: Movie) -> dict[str, Any]:
        movie: dict[str, Any] = {}
        if media.imdb_movie_id:
            movie["ids"] = {"imdb": media.imdb_movie_id}
        elif media.tmdb_movie_id:
            movie["ids"] = {"tmdb": media.tmdb_movie_id}
        elif media.tvdb_movie_id:
            movie["ids"] = {"tvdb": media.tvdb_movie_id}
        elif media.title:
            movie["title"] = media.title
            if media.year:
                movie["year"] = media.year
        else:
            raise MissingIdentifiersError("Movie requires at least IMDB ID, TMDB ID, TVDB ID, or title")

        return {"movie": movie, "progress": 100}

    async def _stop(self, payload: dict[str, Any], access_token: str, title: str) -> None:
        response = await self._request(
            "POST",
            f"{self.config.api_url}/scrobble/stop",
            json=payload,
            headers={**self.headers, "Authorization": f"Bearer {access_token}"},
        )
        if not response.is_success:
            logger.error(
                "[Trakt] Scrobble API error for %s: status=%s, body=%s, payload=%s",
                title,
                response.status_code,
                response.text[:500],
                payload,
            )
            raise RemoteError(
                f"Trakt API error: {response.status_code} - {extract_error_message(response.text)}",
                status_code=response.status_code,
            )
        logger.debug("[Trakt] Scrobbled %s", title)
