"""TVTime login and token refresh."""

import logging
from collections.abc import Awaitable, Callable

import httpx

from ..cache import TokenCache, get_token_cache
from ..config import HttpConfig, TVTimeConfig
from ..errors import CredentialError, RemoteError, extract_error_message
from ..http import AsyncHttpClient
from ..models import TokenPair

logger = logging.getLogger(__name__)

LOGIN_TARGET = "https://auth.tvtime.com/v1/login"
REFRESH_TARGET = "https://auth.tvtime.com/v1/refresh"
BOOTSTRAP_CACHE_KEY = "tvtime:bootstrap"


class TVTimeAuth(AsyncHttpClient):
    """Talks to the TVTime auth proxy.

    Login and refresh calls must carry an anonymous bootstrap JWT issued to
    the TVTime web app. It is obtained through ``bootstrap_fetcher`` and
    shared process-wide through the token cache.
    """

    def __init__(
        self,
        config: TVTimeConfig | None = None,
        http: HttpConfig | None = None,
        cache: TokenCache | None = None,
        bootstrap_fetcher: Callable[[], Awaitable[str]] | None = None,
    ):
        super().__init__(http)
        self.config = config or TVTimeConfig()
        self.cache = cache or get_token_cache()
        self._bootstrap_fetcher = bootstrap_fetcher or self._configured_bootstrap_token

    async def _configured_bootstrap_token(self) -> str:
        token = (self.config.bootstrap_token or "").strip().strip('"')
        if not token:
            raise CredentialError("TVTime", "No TVTime bootstrap token configured (tvtime.bootstrap_token)")
        return token

    async def get_initial_token(self) -> str:
        """Bootstrap JWT, fetched at most once per TTL window."""
        return await self.cache.get_or_fetch(
            BOOTSTRAP_CACHE_KEY,
            self.config.bootstrap_token_ttl_seconds,
            self._bootstrap_fetcher,
        )

    async def login(self, email: str, password: str) -> TokenPair:
        """Full login with the user's TVTime email and password."""
        response = await self._post(LOGIN_TARGET, {"username": email, "password": password})
        if not response.is_success:
            raise RemoteError("Invalid username or password", status_code=response.status_code)
        return self._parse_tokens(response, "login")

    async def refresh_token(self, refresh_token: str) -> TokenPair:
        """Exchange a refresh token for a new token pair."""
        response = await self._post(REFRESH_TARGET, {"refresh_token": refresh_token})
        if not response.is_success:
            raise RemoteError(
                f"TVTime token refresh failed: {response.status_code} - {extract_error_message(response.text)}",
                status_code=response.status_code,
            )
        return self._parse_tokens(response, "token refresh")

    async def _post(self, target: str, body: dict[str, str]) -> httpx.Response:
        initial_token = await self.get_initial_token()
        logger.debug("[TVTime] POST %s", target)
        return await self._request(
            "POST",
            self.config.auth_url,
            params={"o": target},
            json=body,
            headers={
                "Authorization": f"Bearer {initial_token}",
                "Content-Type": "application/json",
            },
        )

    @staticmethod
    def _parse_tokens(response: httpx.Response, action: str) -> TokenPair:
        try:
            payload = response.json()
        except ValueError as e:
            raise RemoteError(f"Invalid response from TVTime {action}", status_code=response.status_code) from e
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict) or not data.get("jwt_token") or not data.get("jwt_refresh_token"):
            raise RemoteError(f"Invalid response from TVTime {action}")
        return TokenPair(access_token=data["jwt_token"], refresh_token=data["jwt_refresh_token"])
