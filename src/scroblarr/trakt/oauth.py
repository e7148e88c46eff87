"""Trakt OAuth token exchange."""

import logging
from datetime import UTC, datetime, timedelta
from urllib.parse import urlencode

from ..config import HttpConfig, TraktConfig
from ..errors import RemoteError, extract_error_message
from ..http import AsyncHttpClient
from ..models import TokenPair

logger = logging.getLogger(__name__)

OOB_REDIRECT_URI = "urn:ietf:wg:oauth:2.0:oob"


class TraktOAuth(AsyncHttpClient):
    """OAuth client for one Trakt application (per-user client id/secret)."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        config: TraktConfig | None = None,
        http: HttpConfig | None = None,
    ):
        super().__init__(http)
        self.client_id = client_id
        self.client_secret = client_secret
        self.config = config or TraktConfig()

    def get_auth_url(self, redirect_uri: str, state: str | None = None) -> str:
        """Build the authorization URL the user is sent to."""
        params = {"client_id": self.client_id, "redirect_uri": redirect_uri, "response_type": "code"}
        if state:
            params["state"] = state
        return f"{self.config.auth_url}?{urlencode(params)}"

    async def exchange_code_for_token(self, code: str, redirect_uri: str) -> TokenPair:
        """Trade an authorization code for an access/refresh pair."""
        return await self._token_request(
            {
                "code": code,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uri": redirect_uri,
                "grant_type": "authorization_code",
            },
            action="exchange Trakt authorization code",
        )

    async def refresh_token(self, refresh_token: str) -> TokenPair:
        """Trade a refresh token for a new access/refresh pair."""
        return await self._token_request(
            {
                "refresh_token": refresh_token,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uri": OOB_REDIRECT_URI,
                "grant_type": "refresh_token",
            },
            action="refresh Trakt token",
        )

    async def _token_request(self, body: dict[str, str], action: str) -> TokenPair:
        response = await self._request(
            "POST",
            f"{self.config.api_url}/oauth/token",
            json=body,
            headers={
                "Content-Type": "application/json",
                "trakt-api-version": "2",
                "trakt-api-key": self.client_id,
            },
        )
        if not response.is_success:
            logger.error("Failed to %s: %s %s", action, response.status_code, response.text[:200])
            raise RemoteError(
                f"Failed to {action}: {response.status_code} - {extract_error_message(response.text)}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
            return TokenPair(
                access_token=data["access_token"],
                refresh_token=data["refresh_token"],
                expires_at=datetime.now(UTC) + timedelta(seconds=int(data["expires_in"])),
            )
        except (ValueError, KeyError, TypeError) as e:
            raise RemoteError(f"Invalid response from Trakt token endpoint: {e}", response.status_code) from e
