"""Trakt access token lifecycle (explicit expiry timestamp)."""

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

import httpx

from ..config import HttpConfig, TraktConfig
from ..credentials import CredentialResolver, utcnow
from ..database import Database
from ..errors import NotLinkedError, RefreshFailedError, ScroblarrError
from ..models import TokenPair
from .oauth import TraktOAuth

logger = logging.getLogger(__name__)


class TraktTokenManager(CredentialResolver):
    """Keeps a user's Trakt token valid using the stored expiry timestamp."""

    destination = "Trakt"

    def __init__(
        self,
        db: Database,
        config: TraktConfig | None = None,
        http: HttpConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
        oauth_factory: Callable[[str, str], TraktOAuth] | None = None,
    ):
        super().__init__(db, clock)
        self.config = config or TraktConfig()
        self.http = http or HttpConfig()
        self._oauth_factory = oauth_factory or self._default_oauth

    def _default_oauth(self, client_id: str, client_secret: str) -> TraktOAuth:
        return TraktOAuth(client_id, client_secret, self.config, self.http)

    def _token_fields(self, tokens: TokenPair) -> dict[str, Any]:
        return {
            "trakt_access_token": tokens.access_token,
            "trakt_refresh_token": tokens.refresh_token,
            "trakt_token_expires_at": tokens.expires_at,
        }

    async def get_valid_access_token(self, user_id: str) -> str:
        user = await self._load_user(user_id)

        if not user.trakt_access_token or not user.trakt_refresh_token:
            raise NotLinkedError(self.destination, "Trakt not linked for this user")

        if self._is_fresh(user.trakt_token_expires_at):
            return user.trakt_access_token

        if not user.trakt_client_id or not user.trakt_client_secret:
            raise NotLinkedError(
                self.destination,
                "Trakt client ID and secret not configured. Please configure them in your profile settings.",
            )

        oauth = self._oauth_factory(user.trakt_client_id, user.trakt_client_secret)
        try:
            tokens = await oauth.refresh_token(user.trakt_refresh_token)
        except (httpx.HTTPError, ScroblarrError) as e:
            logger.error("[Trakt] Failed to refresh token for user %s: %s", user_id, e)
            raise RefreshFailedError(self.destination, f"Failed to refresh Trakt token: {e}") from e
        finally:
            await oauth.close()

        await self._persist(user.id, tokens)
        logger.info("[Trakt] Refreshed access token for user %s", user_id)
        return tokens.access_token
