"""Jellyfin API client used for poster enrichment."""

import logging
import uuid
from importlib.metadata import PackageNotFoundError, metadata
from typing import Any

import httpx

from ..config import HttpConfig
from ..http import AsyncHttpClient

logger = logging.getLogger(__name__)

# Get package metadata for client identification
_PKG_NAME = "scroblarr"
try:
    _pkg_meta = metadata(_PKG_NAME)
    CLIENT_NAME = _pkg_meta["Name"]
    CLIENT_VERSION = _pkg_meta["Version"]
except PackageNotFoundError:
    CLIENT_NAME, CLIENT_VERSION = _PKG_NAME, "0.0.0"
# Stable device ID so Jellyfin groups our sessions under one device
DEVICE_ID = str(uuid.uuid5(uuid.NAMESPACE_DNS, f"{_PKG_NAME}.local"))


class JellyfinClient(AsyncHttpClient):
    """Async client for the Jellyfin API, authenticated per call with a user token."""

    def __init__(self, base_url: str, http: HttpConfig | None = None):
        super().__init__(http)
        self.base_url = base_url.rstrip("/")

    def get_auth_header(self, token: str | None = None) -> str:
        """Jellyfin authorization header, with the token when one is given."""
        header = (
            f'MediaBrowser Client="{CLIENT_NAME}", '
            f'Device="{CLIENT_NAME}", '
            f'DeviceId="{DEVICE_ID}", '
            f'Version="{CLIENT_VERSION}"'
        )
        if token:
            header += f', Token="{token}"'
        return header

    async def _get_json(self, endpoint: str, token: str) -> Any:
        response = await self._request(
            "GET",
            f"{self.base_url}{endpoint}",
            headers={"Authorization": self.get_auth_header(token), "Accept": "application/json"},
        )
        response.raise_for_status()
        return response.json()

    async def get_season_poster_url(self, access_token: str, episode_item_id: str, season_number: int) -> str | None:
        """Primary image URL of the season containing an episode.

        Walks episode -> series (ancestors) -> seasons. Returns None on any
        failure.
        """
        try:
            ancestors = await self._get_json(f"/Items/{episode_item_id}/Ancestors", access_token)
            series = next(
                (item for item in ancestors or [] if isinstance(item, dict) and item.get("Type") == "Series"),
                None,
            )
            if not series or not series.get("Id"):
                return None

            seasons = await self._get_json(f"/Shows/{series['Id']}/Seasons", access_token)
            season = next(
                (
                    item
                    for item in (seasons or {}).get("Items") or []
                    if isinstance(item, dict) and item.get("IndexNumber") == season_number
                ),
                None,
            )
            if not season or not season.get("Id"):
                return None

            return f"{self.base_url}/Items/{season['Id']}/Images/Primary"
        except (httpx.HTTPError, httpx.InvalidURL, ValueError, TypeError, AttributeError) as e:
            logger.debug("Season poster lookup failed for item %s season %s: %s", episode_item_id, season_number, e)
            return None

    async def health_check(self) -> bool:
        """Check if the server is reachable."""
        try:
            response = await self._request("GET", f"{self.base_url}/System/Info/Public")
            response.raise_for_status()
            logger.debug("Jellyfin health check OK: %s", self.base_url)
            return True
        except httpx.HTTPError as e:
            logger.warning("Jellyfin health check FAILED: %s: %s", self.base_url, e)
            return False
