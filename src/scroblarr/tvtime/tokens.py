"""TVTime access token lifecycle (expiry embedded in the JWT)."""

import base64
import binascii
import json
import logging
import math
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import httpx

from ..credentials import CredentialResolver, utcnow
from ..database import Database
from ..errors import NotLinkedError, ReauthFailedError, RefreshFailedError, ScroblarrError
from ..models import TokenPair
from .auth import TVTimeAuth

logger = logging.getLogger(__name__)


def decode_jwt_payload(token: str) -> dict[str, Any]:
    """Decode a JWT's payload segment without verifying the signature."""
    parts = token.split(".") if isinstance(token, str) else []
    if len(parts) != 3:
        raise ValueError(f"Invalid JWT token format: expected 3 parts, got {len(parts)}")
    if not parts[1]:
        raise ValueError("JWT payload is empty")

    padded = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        payload = json.loads(base64.urlsafe_b64decode(padded))
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        raise ValueError(f"Failed to decode JWT token: {e}") from e
    if not isinstance(payload, dict):
        raise ValueError("JWT payload is not an object")
    return payload


def token_expiry(token: str) -> datetime | None:
    """Expiry from the ``exp`` claim, or None if absent or unreadable."""
    try:
        exp = float(decode_jwt_payload(token).get("exp"))
        if not math.isfinite(exp):
            return None
        return datetime.fromtimestamp(exp, UTC)
    except (ValueError, TypeError, OverflowError, OSError):
        return None


class TVTimeTokenManager(CredentialResolver):
    """Keeps a user's TVTime token valid, re-logging in when refresh fails."""

    destination = "TVTime"

    def __init__(
        self,
        db: Database,
        auth: TVTimeAuth | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        super().__init__(db, clock)
        self.auth = auth or TVTimeAuth()

    def _token_fields(self, tokens: TokenPair) -> dict[str, Any]:
        return {
            "tvtime_access_token": tokens.access_token,
            "tvtime_refresh_token": tokens.refresh_token,
        }

    def is_token_valid(self, token: str) -> bool:
        return self._is_fresh(token_expiry(token))

    async def get_valid_access_token(self, user_id: str) -> str:
        user = await self._load_user(user_id)

        if not user.tvtime_access_token or not user.tvtime_refresh_token:
            raise NotLinkedError(self.destination, "TVTime not linked for this user")

        if self.is_token_valid(user.tvtime_access_token):
            return user.tvtime_access_token

        try:
            tokens = await self.auth.refresh_token(user.tvtime_refresh_token)
        except (httpx.HTTPError, ScroblarrError) as refresh_error:
            logger.warning("[TVTime] Token refresh failed for user %s, attempting re-login: %s", user_id, refresh_error)

            if not user.tvtime_email or not user.tvtime_password:
                raise RefreshFailedError(
                    self.destination,
                    "TVTime token expired and refresh failed. Credentials not available for re-login. "
                    f"Original error: {refresh_error}",
                ) from refresh_error

            try:
                tokens = await self.auth.login(user.tvtime_email, user.tvtime_password)
            except (httpx.HTTPError, ScroblarrError) as login_error:
                logger.error("[TVTime] Re-login failed for user %s: %s", user_id, login_error)
                raise ReauthFailedError(
                    self.destination, f"Failed to re-login to TVTime: {login_error}"
                ) from login_error

            await self._persist(user.id, tokens)
            logger.info("[TVTime] Re-authenticated user %s after token refresh failure", user_id)
            return tokens.access_token

        await self._persist(user.id, tokens)
        logger.info("[TVTime] Refreshed access token for user %s", user_id)
        return tokens.access_token
