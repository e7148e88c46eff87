"""Tests for the TVTime client, auth and token manager."""

import base64
import json
import tempfile
from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from scroblarr.cache import TokenCache
from scroblarr.config import TVTimeConfig
from scroblarr.database import Database
from scroblarr.errors import (
    CredentialError,
    MissingIdentifiersError,
    NotLinkedError,
    ReauthFailedError,
    RefreshFailedError,
    RemoteError,
)
from scroblarr.models import Episode, MediaSource, MediaStatus, Movie, NormalizedEvent, SyncOptions, TokenPair
from scroblarr.tvtime import TVTimeAuth, TVTimeClient, TVTimeTokenManager
from scroblarr.tvtime.client import build_error_message, encode_target
from scroblarr.tvtime.tokens import decode_jwt_payload, token_expiry

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


def make_jwt(payload: dict) -> str:
    def segment(data: dict) -> str:
        return base64.urlsafe_b64encode(json.dumps(data).encode()).decode().rstrip("=")

    return f"{segment({'alg': 'HS256'})}.{segment(payload)}.signature"


@pytest.fixture
async def db():
    """Create a temporary database for testing."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)

    database = Database(db_path)
    await database.connect()
    yield database
    await database.close()
    db_path.unlink(missing_ok=True)


@pytest.fixture
def client():
    return TVTimeClient()


def scrobble_event(media) -> NormalizedEvent:
    return NormalizedEvent(status=MediaStatus.SCROBBLE, media=media, user_identity="alice", source=MediaSource.PLEX)


def test_encode_target_strips_padding():
    encoded = encode_target("https://x.example/a")
    assert not encoded.endswith("=")
    assert base64.b64decode(encoded + "=" * (-len(encoded) % 4)).decode() == "https://x.example/a"


class TestErrorMessages:
    """Test status-prefixed error messages."""

    def test_known_status_with_detail(self):
        assert (
            build_error_message(429, '{"message": "slow down"}')
            == "TVTime API error: Too Many Requests - Rate limit exceeded - slow down"
        )

    def test_unknown_status(self):
        assert build_error_message(418, "") == "TVTime API error: HTTP 418"

    def test_gateway_page_detail_dropped(self):
        body = "<html><head><title>502 Bad Gateway</title></head></html>"
        expected = "TVTime API error: Bad Gateway - TVTime service temporarily unavailable"
        assert build_error_message(502, body) == expected


class TestEpisodeScrobble:
    """Test episode watch calls."""

    @pytest.mark.asyncio
    async def test_marks_episode_watched(self, client):
        with patch.object(client, "_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = httpx.Response(200, json={"result": "OK"})
            await client.scrobble(
                scrobble_event(Episode(title="Show", tvdb_episode_id=555)),
                "token",
                SyncOptions(mark_episodes_as_rewatched=True),
            )

        args, kwargs = mock_request.call_args
        assert args == ("POST", "https://app.tvtime.com/sidecar")
        assert kwargs["params"]["is_rewatch"] == 1
        assert kwargs["params"]["o_b64"] == encode_target(
            "https://api2.tozelabs.com/v2/watched_episodes/episode/555"
        )
        assert kwargs["headers"]["Authorization"] == "Bearer token"

    @pytest.mark.asyncio
    async def test_movie_rewatch_flag_does_not_leak(self, client):
        with patch.object(client, "_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = httpx.Response(200, json={"result": "OK"})
            await client.scrobble(
                scrobble_event(Episode(title="Show", tvdb_episode_id=555)),
                "token",
                SyncOptions(mark_movies_as_rewatched=True),
            )
        assert mock_request.call_args[1]["params"]["is_rewatch"] == 0

    @pytest.mark.asyncio
    async def test_requires_tvdb_episode_id(self, client):
        with patch.object(client, "_request", new_callable=AsyncMock) as mock_request:
            with pytest.raises(MissingIdentifiersError, match="TVDB episode ID"):
                await client.scrobble(scrobble_event(Episode(title="Show", season_number=1, episode_number=2)), "t")
        mock_request.assert_not_called()

    @pytest.mark.asyncio
    async def test_non_ok_result(self, client):
        with patch.object(client, "_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = httpx.Response(200, json={"result": "KO"})
            with pytest.raises(RemoteError, match="non-OK result: KO"):
                await client.scrobble(scrobble_event(Episode(title="Show", tvdb_episode_id=555)), "t")

    @pytest.mark.asyncio
    async def test_http_error(self, client):
        with patch.object(client, "_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = httpx.Response(401, text="")
            with pytest.raises(RemoteError, match="Unauthorized") as exc_info:
                await client.scrobble(scrobble_event(Episode(title="Show", tvdb_episode_id=555)), "t")
        assert exc_info.value.status_code == 401


class TestMovieScrobble:
    """Test movie lookup and watch calls."""

    @pytest.mark.asyncio
    async def test_uuid_prefers_tvdb_match(self, client):
        search = {
            "status": "success",
            "data": [
                {"id": 1, "uuid": "first"},
                {"id": 77, "uuid": "exact"},
            ],
        }
        with patch.object(client, "_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = httpx.Response(200, json=search)
            movie_uuid = await client.get_movie_uuid(Movie(title="Film", tvdb_movie_id=77), "t")

        assert movie_uuid == "exact"
        assert mock_request.call_args[1]["params"]["q"] == "77"

    @pytest.mark.asyncio
    async def test_uuid_matches_imdb(self, client):
        search = {"status": "success", "data": [{"uuid": "a", "imdb_id": "tt0"}, {"uuid": "b", "imdb_id": "tt1"}]}
        with patch.object(client, "_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = httpx.Response(200, json=search)
            assert await client.get_movie_uuid(Movie(title="Film", imdb_movie_id="tt1"), "t") == "b"

    @pytest.mark.asyncio
    async def test_uuid_title_search_uses_first(self, client):
        search = {"status": "success", "data": [{"uuid": "a"}, {"uuid": "b"}]}
        with patch.object(client, "_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = httpx.Response(200, json=search)
            assert await client.get_movie_uuid(Movie(title="Film"), "t") == "a"
        assert mock_request.call_args[1]["params"]["limit"] == 24

    @pytest.mark.asyncio
    async def test_uuid_search_failure(self, client):
        with patch.object(client, "_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = httpx.Response(500, text="oops")
            assert await client.get_movie_uuid(Movie(title="Film"), "t") is None

    @pytest.mark.asyncio
    async def test_rewatch_movie(self, client):
        with (
            patch.object(client, "get_movie_uuid", new_callable=AsyncMock, return_value="uuid-1"),
            patch.object(client, "_request", new_callable=AsyncMock) as mock_request,
        ):
            mock_request.return_value = httpx.Response(200, json={"status": "success"})
            await client.scrobble(
                scrobble_event(Movie(title="Film")),
                "t",
                SyncOptions(mark_movies_as_rewatched=True),
            )

        assert mock_request.call_args[1]["params"]["o_b64"] == encode_target(
            "https://msapi.tvtime.com/prod/v1/tracking/uuid-1/rewatch"
        )

    @pytest.mark.asyncio
    async def test_movie_not_found(self, client):
        with patch.object(client, "get_movie_uuid", new_callable=AsyncMock, return_value=None):
            with pytest.raises(RemoteError, match=r'Could not find movie UUID for "Film" \(IMDB ID: tt1\)'):
                await client.scrobble(scrobble_event(Movie(title="Film", imdb_movie_id="tt1")), "t")

    @pytest.mark.asyncio
    async def test_movie_non_success_status(self, client):
        with (
            patch.object(client, "get_movie_uuid", new_callable=AsyncMock, return_value="uuid-1"),
            patch.object(client, "_request", new_callable=AsyncMock) as mock_request,
        ):
            mock_request.return_value = httpx.Response(200, json={"status": "error"})
            with pytest.raises(RemoteError, match="non-success status"):
                await client.scrobble(scrobble_event(Movie(title="Film")), "t")


class TestAuth:
    """Test login, refresh and the shared bootstrap token."""

    @pytest.mark.asyncio
    async def test_bootstrap_token_fetched_once(self):
        fetcher = AsyncMock(return_value="bootstrap")
        cache = TokenCache()
        auth = TVTimeAuth(cache=cache, bootstrap_fetcher=fetcher)
        other = TVTimeAuth(cache=cache, bootstrap_fetcher=fetcher)

        assert await auth.get_initial_token() == "bootstrap"
        assert await other.get_initial_token() == "bootstrap"
        fetcher.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_configured_bootstrap_token(self):
        auth = TVTimeAuth(TVTimeConfig(bootstrap_token='"abc.def.ghi"'), cache=TokenCache())
        assert await auth.get_initial_token() == "abc.def.ghi"

    @pytest.mark.asyncio
    async def test_missing_bootstrap_token(self):
        auth = TVTimeAuth(TVTimeConfig(), cache=TokenCache())
        with pytest.raises(CredentialError, match="bootstrap token"):
            await auth.get_initial_token()

    @pytest.mark.asyncio
    async def test_login(self):
        auth = TVTimeAuth(cache=TokenCache(), bootstrap_fetcher=AsyncMock(return_value="boot"))
        with patch.object(auth, "_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = httpx.Response(
                200, json={"data": {"jwt_token": "access", "jwt_refresh_token": "refresh"}}
            )
            tokens = await auth.login("a@example.com", "pw")

        assert tokens == TokenPair(access_token="access", refresh_token="refresh")
        kwargs = mock_request.call_args[1]
        assert kwargs["params"] == {"o": "https://auth.tvtime.com/v1/login"}
        assert kwargs["headers"]["Authorization"] == "Bearer boot"
        assert kwargs["json"] == {"username": "a@example.com", "password": "pw"}

    @pytest.mark.asyncio
    async def test_login_rejected(self):
        auth = TVTimeAuth(cache=TokenCache(), bootstrap_fetcher=AsyncMock(return_value="boot"))
        with patch.object(auth, "_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = httpx.Response(401, json={})
            with pytest.raises(RemoteError, match="Invalid username or password"):
                await auth.login("a@example.com", "wrong")

    @pytest.mark.asyncio
    async def test_refresh_malformed(self):
        auth = TVTimeAuth(cache=TokenCache(), bootstrap_fetcher=AsyncMock(return_value="boot"))
        with patch.object(auth, "_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = httpx.Response(200, json={"data": {"jwt_token": "only-access"}})
            with pytest.raises(RemoteError, match="Invalid response from TVTime token refresh"):
                await auth.refresh_token("r")


class TestJwt:
    """Test expiry claim decoding."""

    def test_decode_payload(self):
        assert decode_jwt_payload(make_jwt({"exp": 1700000000, "sub": "x"}))["sub"] == "x"

    def test_decode_rejects_malformed(self):
        with pytest.raises(ValueError):
            decode_jwt_payload("not-a-jwt")
        with pytest.raises(ValueError):
            decode_jwt_payload("a..c")

    def test_token_expiry(self):
        assert token_expiry(make_jwt({"exp": 1700000000})) == datetime.fromtimestamp(1700000000, UTC)

    def test_token_expiry_missing_claim(self):
        assert token_expiry(make_jwt({"sub": "x"})) is None
        assert token_expiry("garbage") is None


class TestTokenManager:
    """Test the embedded-expiry refresh policy with re-login fallback."""

    async def linked_user(self, db, access_token: str, **overrides):
        fields = {
            "plex_username": "alice",
            "tvtime_access_token": access_token,
            "tvtime_refresh_token": "old-r",
        }
        fields.update(overrides)
        return await db.create_user(**fields)

    def manager(self, db, auth) -> TVTimeTokenManager:
        return TVTimeTokenManager(db, auth, clock=lambda: NOW)

    @pytest.mark.asyncio
    async def test_valid_token_returned(self, db):
        token = make_jwt({"exp": (NOW + timedelta(hours=1)).timestamp()})
        user = await self.linked_user(db, token)
        auth = MagicMock(spec=TVTimeAuth)

        assert await self.manager(db, auth).get_valid_access_token(user.id) == token
        auth.refresh_token.assert_not_called()

    @pytest.mark.asyncio
    async def test_expiring_token_refreshed(self, db):
        user = await self.linked_user(db, make_jwt({"exp": (NOW + timedelta(minutes=2)).timestamp()}))
        auth = MagicMock(spec=TVTimeAuth)
        auth.refresh_token = AsyncMock(return_value=TokenPair(access_token="new-a", refresh_token="new-r"))

        assert await self.manager(db, auth).get_valid_access_token(user.id) == "new-a"
        stored = await db.get_user(user.id)
        assert stored is not None
        assert (stored.tvtime_access_token, stored.tvtime_refresh_token) == ("new-a", "new-r")

    @pytest.mark.asyncio
    async def test_undecodable_token_refreshed(self, db):
        user = await self.linked_user(db, "opaque")
        auth = MagicMock(spec=TVTimeAuth)
        auth.refresh_token = AsyncMock(return_value=TokenPair(access_token="new-a", refresh_token="new-r"))

        assert await self.manager(db, auth).get_valid_access_token(user.id) == "new-a"

    @pytest.mark.asyncio
    async def test_relogin_after_refresh_failure(self, db):
        user = await self.linked_user(db, "expired", tvtime_email="a@example.com", tvtime_password="pw")
        auth = MagicMock(spec=TVTimeAuth)
        auth.refresh_token = AsyncMock(side_effect=RemoteError("TVTime token refresh failed: 401", 401))
        auth.login = AsyncMock(return_value=TokenPair(access_token="login-a", refresh_token="login-r"))

        assert await self.manager(db, auth).get_valid_access_token(user.id) == "login-a"
        auth.login.assert_awaited_once_with("a@example.com", "pw")
        stored = await db.get_user(user.id)
        assert stored is not None
        assert stored.tvtime_refresh_token == "login-r"

    @pytest.mark.asyncio
    async def test_refresh_failure_without_credentials(self, db):
        user = await self.linked_user(db, "expired")
        auth = MagicMock(spec=TVTimeAuth)
        auth.refresh_token = AsyncMock(side_effect=httpx.ReadTimeout("timed out"))
        auth.login = AsyncMock()

        with pytest.raises(RefreshFailedError, match="Original error: timed out"):
            await self.manager(db, auth).get_valid_access_token(user.id)
        auth.login.assert_not_called()

    @pytest.mark.asyncio
    async def test_relogin_failure(self, db):
        user = await self.linked_user(db, "expired", tvtime_email="a@example.com", tvtime_password="pw")
        auth = MagicMock(spec=TVTimeAuth)
        auth.refresh_token = AsyncMock(side_effect=RemoteError("refresh failed"))
        auth.login = AsyncMock(side_effect=RemoteError("Invalid username or password", 401))

        with pytest.raises(ReauthFailedError, match="Invalid username or password"):
            await self.manager(db, auth).get_valid_access_token(user.id)

    @pytest.mark.asyncio
    async def test_not_linked(self, db):
        user = await db.create_user(plex_username="bob", tvtime_access_token="only-access")
        with pytest.raises(NotLinkedError):
            await self.manager(db, MagicMock(spec=TVTimeAuth)).get_valid_access_token(user.id)
