"""Tests for the scheduled token refresh sweep."""

import asyncio
import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from scroblarr.credentials import CredentialResolver
from scroblarr.database import Database
from scroblarr.errors import RefreshFailedError
from scroblarr.models import RefreshStatus, User
from scroblarr.sync.destinations import Destination
from scroblarr.sync.refresh import TokenRefreshService


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


class FakeDestination(Destination):
    """Destination linked through a ``<name>_linked`` marker in the user's display name."""

    def __init__(self, name: str, failing_users: set[str] | None = None):
        credentials = MagicMock(spec=CredentialResolver)
        failing = failing_users or set()

        async def get_valid_access_token(user_id: str) -> str:
            if user_id in failing:
                raise RefreshFailedError(name, f"refresh rejected for {user_id}")
            return "token"

        credentials.get_valid_access_token = AsyncMock(side_effect=get_valid_access_token)
        super().__init__(credentials)
        self.name = name

    def is_linked_for(self, user: User) -> bool:
        return f"{self.name}_linked" in (user.display_name or "")

    def client_for(self, user: User):
        raise NotImplementedError


@pytest.mark.asyncio
async def test_refresh_all_outcomes(db):
    alice = await db.create_user(plex_username="alice", display_name="DestA_linked DestB_linked")
    bob = await db.create_user(plex_username="bob", display_name="DestA_linked")
    dest_a = FakeDestination("DestA", failing_users={alice.id})
    dest_b = FakeDestination("DestB")
    service = TokenRefreshService(db, [dest_a, dest_b])

    outcomes = await service.refresh_all()

    by_pair = {(o.user_id, o.destination): o for o in outcomes}
    assert len(outcomes) == 4
    assert by_pair[(alice.id, "DestA")].status == RefreshStatus.FAILED
    assert "refresh rejected" in (by_pair[(alice.id, "DestA")].reason or "")
    assert by_pair[(alice.id, "DestB")].status == RefreshStatus.SUCCESS
    assert by_pair[(bob.id, "DestA")].status == RefreshStatus.SUCCESS
    assert by_pair[(bob.id, "DestB")].status == RefreshStatus.SKIPPED


@pytest.mark.asyncio
async def test_failure_does_not_abort_sweep(db):
    """One user's failure leaves later users untouched."""
    first = await db.create_user(plex_username="first", display_name="DestA_linked")
    second = await db.create_user(plex_username="second", display_name="DestA_linked")
    dest = FakeDestination("DestA", failing_users={first.id})
    service = TokenRefreshService(db, [dest])

    outcomes = await service.refresh_all()

    statuses = {o.user_id: o.status for o in outcomes}
    assert statuses == {first.id: RefreshStatus.FAILED, second.id: RefreshStatus.SUCCESS}
    assert dest.credentials.get_valid_access_token.await_count == 2


@pytest.mark.asyncio
async def test_no_users(db):
    service = TokenRefreshService(db, [FakeDestination("DestA")])
    assert await service.refresh_all() == []


@pytest.mark.asyncio
async def test_start_and_stop(db):
    service = TokenRefreshService(db, [FakeDestination("DestA")])
    service.refresh_all = AsyncMock(return_value=[])

    await service.start(interval_seconds=0.01, run_immediately=True)
    assert service.is_running
    await asyncio.sleep(0.05)
    await service.stop()

    assert not service.is_running
    assert service.refresh_all.await_count >= 1


@pytest.mark.asyncio
async def test_loop_survives_errors(db):
    service = TokenRefreshService(db, [FakeDestination("DestA")])
    service.refresh_all = AsyncMock(side_effect=[RuntimeError("db locked"), []])

    await service.start(interval_seconds=0.01, run_immediately=True)
    await asyncio.sleep(0.05)
    await service.stop()

    assert service.refresh_all.await_count >= 2


@pytest.mark.asyncio
async def test_start_is_idempotent(db):
    service = TokenRefreshService(db, [FakeDestination("DestA")])

    await service.start(interval_seconds=3600)
    task = service._task
    await service.start(interval_seconds=3600)
    assert service._task is task
    await service.stop()
