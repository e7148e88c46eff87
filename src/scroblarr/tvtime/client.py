"""TVTime scrobble client."""

import base64
import json
import logging
from typing import Any

from ..config import HttpConfig, TVTimeConfig
from ..errors import MissingIdentifiersError, RemoteError, UnsupportedMediaError, extract_error_message
from ..http import AsyncHttpClient
from ..models import Episode, Movie, NormalizedEvent, SyncOptions

logger = logging.getLogger(__name__)

EPISODE_WATCH_TARGET = "https://api2.tozelabs.com/v2/watched_episodes/episode/{tvdb_id}"
MOVIE_TRACKING_TARGET = "https://msapi.tvtime.com/prod/v1/tracking/{uuid}/{action}"
SEARCH_TARGET = "https://search.tvtime.com/v1/search/series,movie"

STATUS_MESSAGES = {
    400: "Bad Request - Invalid request parameters",
    401: "Unauthorized - Authentication failed",
    403: "Forbidden - Access denied",
    404: "Not Found - Resource not found",
    429: "Too Many Requests - Rate limit exceeded",
    500: "Internal Server Error - TVTime server error",
    502: "Bad Gateway - TVTime service temporarily unavailable",
    503: "Service Unavailable - TVTime service temporarily unavailable",
    504: "Gateway Timeout - TVTime service timeout",
}


def encode_target(url: str) -> str:
    """Encode an upstream URL for the sidecar proxy's ``o_b64`` parameter."""
    return base64.b64encode(url.encode()).decode().rstrip("=")


def build_error_message(status: int, body: str) -> str:
    """Error message for a failed TVTime call, with whatever detail the body offers."""
    status_message = STATUS_MESSAGES.get(status, f"HTTP {status}")
    message = f"TVTime API error: {status_message}"
    detail = extract_error_message(body)
    # Proxy error pages often just repeat the status line
    if detail and detail != status_message and "Bad Gateway" not in detail and not detail.startswith("<"):
        message = f"{message} - {detail}"
    return message


class TVTimeClient(AsyncHttpClient):
    """Marks movies and episodes as watched on TVTime through its web sidecar proxy."""

    name = "TVTime"

    def __init__(self, config: TVTimeConfig | None = None, http: HttpConfig | None = None):
        super().__init__(http)
        self.config = config or TVTimeConfig()

    @property
    def sidecar_url(self) -> str:
        return f"https://{self.config.app_host}/sidecar"

    def _headers(self, access_token: str) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {access_token}",
        }

    async def scrobble(self, event: NormalizedEvent, access_token: str, options: SyncOptions | None = None) -> None:
        options = options or SyncOptions()
        media = event.media
        if isinstance(media, Episode):
            await self._scrobble_episode(media, access_token, options.mark_episodes_as_rewatched)
        elif isinstance(media, Movie):
            await self._scrobble_movie(media, access_token, options.mark_movies_as_rewatched)
        else:
            raise UnsupportedMediaError(f"Unsupported media type: {getattr(media, 'type', media)}")

    async def _scrobble_episode(self, media: Episode, access_token: str, is_rewatch: bool) -> None:
        if not media.tvdb_episode_id:
            raise MissingIdentifiersError(
                "TVDB episode ID is required for TVTime scrobbling. "
                "Make sure the media server metadata includes a TVDB GUID."
            )

        target = EPISODE_WATCH_TARGET.format(tvdb_id=media.tvdb_episode_id)
        response = await self._request(
            "POST",
            self.sidecar_url,
            params={"o_b64": encode_target(target), "is_rewatch": 1 if is_rewatch else 0},
            content=json.dumps(""),
            headers=self._headers(access_token),
        )
        if not response.is_success:
            logger.error(
                "[TVTime] Episode watch API error: status=%s, tvdb=%s, show=%s",
                response.status_code,
                media.tvdb_episode_id,
                media.title,
            )
            raise RemoteError(build_error_message(response.status_code, response.text), response.status_code)

        result = self._json_or_none(response.text)
        if isinstance(result, dict) and result.get("result") and result["result"] != "OK":
            raise RemoteError(f"TVTime API returned non-OK result: {result['result']}", response.status_code)
        logger.debug("[TVTime] Marked episode %s watched (rewatch=%s)", media.tvdb_episode_id, is_rewatch)

    async def _scrobble_movie(self, media: Movie, access_token: str, is_rewatch: bool) -> None:
        if not media.title:
            raise MissingIdentifiersError("Movie title is required for TVTime scrobbling")

        movie_uuid = await self.get_movie_uuid(media, access_token)
        if not movie_uuid:
            if media.tvdb_movie_id:
                id_info = f" (TVDB ID: {media.tvdb_movie_id})"
            elif media.imdb_movie_id:
                id_info = f" (IMDB ID: {media.imdb_movie_id})"
            else:
                id_info = ""
            raise RemoteError(f'Could not find movie UUID for "{media.title}"{id_info}')

        target = MOVIE_TRACKING_TARGET.format(uuid=movie_uuid, action="rewatch" if is_rewatch else "watch")
        response = await self._request(
            "POST",
            self.sidecar_url,
            params={"o_b64": encode_target(target)},
            headers=self._headers(access_token),
        )
        if not response.is_success:
            logger.error(
                "[TVTime] Movie watch API error: status=%s, movie=%s, uuid=%s",
                response.status_code,
                media.title,
                movie_uuid,
            )
            raise RemoteError(build_error_message(response.status_code, response.text), response.status_code)

        result = self._json_or_none(response.text)
        if isinstance(result, dict) and result.get("status") and result["status"] != "success":
            raise RemoteError(f"TVTime API returned non-success status: {result['status']}", response.status_code)
        logger.debug("[TVTime] Marked movie %s watched (rewatch=%s)", media.title, is_rewatch)

    async def get_movie_uuid(self, media: Movie, access_token: str) -> str | None:
        """Look up TVTime's movie UUID. Search priority: TVDB id, IMDB id, title."""
        if media.tvdb_movie_id:
            query, limit = str(media.tvdb_movie_id), 12
        elif media.imdb_movie_id:
            query, limit = media.imdb_movie_id, 12
        else:
            query, limit = media.title, 24

        response = await self._request(
            "GET",
            self.sidecar_url,
            params={"o_b64": encode_target(SEARCH_TARGET), "q": query, "offset": 0, "limit": limit},
            headers=self._headers(access_token),
        )
        if not response.is_success:
            logger.error("[TVTime] Movie search error: status=%s, query=%s", response.status_code, query)
            return None

        search = self._json_or_none(response.text)
        if not isinstance(search, dict) or search.get("status") != "success":
            logger.error("[TVTime] Movie search returned non-success status for %s", query)
            return None

        movies: list[dict[str, Any]] = [m for m in search.get("data") or [] if isinstance(m, dict)]

        if media.tvdb_movie_id:
            for movie in movies:
                if movie.get("id") == media.tvdb_movie_id and movie.get("uuid"):
                    return movie["uuid"]

        if media.imdb_movie_id:
            for movie in movies:
                if movie.get("imdb_id") == media.imdb_movie_id and movie.get("uuid"):
                    return movie["uuid"]

        if movies and movies[0].get("uuid"):
            if not media.tvdb_movie_id and not media.imdb_movie_id:
                logger.warning(
                    "[TVTime] No ID match for %s, using first of %d search results (may be incorrect)",
                    media.title,
                    len(movies),
                )
            return movies[0]["uuid"]

        logger.warning("[TVTime] No movie found for %s in search results", media.title)
        return None

    @staticmethod
    def _json_or_none(text: str) -> Any:
        try:
            return json.loads(text) if text else None
        except ValueError:
            logger.warning("[TVTime] Could not parse response body: %s", text[:200])
            return None
