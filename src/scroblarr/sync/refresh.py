"""Periodic sweep keeping every linked user's destination tokens fresh."""

import asyncio
import contextlib
import logging
from collections import Counter

from ..database import Database
from ..models import RefreshOutcome, RefreshStatus
from .destinations import Destination

logger = logging.getLogger(__name__)


class TokenRefreshService:
    """Refreshes credentials for all users and destinations.

    Each (user, destination) pair is isolated: one failure is recorded as a
    FAILED outcome and the sweep moves on.
    """

    def __init__(self, db: Database, destinations: list[Destination]):
        self.db = db
        self.destinations = destinations
        self._running = False
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def refresh_all(self) -> list[RefreshOutcome]:
        """Run one sweep and return an outcome per user and destination."""
        logger.info("Starting scheduled token refresh for all users")
        users = await self.db.get_all_users()
        outcomes: list[RefreshOutcome] = []

        for user in users:
            for destination in self.destinations:
                if not destination.is_linked_for(user):
                    outcomes.append(
                        RefreshOutcome(user_id=user.id, destination=destination.name, status=RefreshStatus.SKIPPED)
                    )
                    continue
                try:
                    await destination.credentials.get_valid_access_token(user.id)
                    outcomes.append(
                        RefreshOutcome(user_id=user.id, destination=destination.name, status=RefreshStatus.SUCCESS)
                    )
                    logger.debug("[%s] Token valid for user %s", destination.name, user.id)
                except Exception as e:
                    outcomes.append(
                        RefreshOutcome(
                            user_id=user.id,
                            destination=destination.name,
                            status=RefreshStatus.FAILED,
                            reason=str(e),
                        )
                    )
                    logger.warning("[%s] Scheduled token refresh failed for user %s: %s", destination.name, user.id, e)

        counts = Counter((o.destination, o.status) for o in outcomes)
        summary = ", ".join(
            f"{d.name}: {counts[(d.name, RefreshStatus.SUCCESS)]} ok / {counts[(d.name, RefreshStatus.FAILED)]} failed"
            for d in self.destinations
        )
        logger.info("Completed scheduled token refresh for %d users (%s)", len(users), summary)
        return outcomes

    async def start(self, interval_seconds: float, run_immediately: bool = False) -> None:
        """Start the background sweep task."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop(interval_seconds, run_immediately))
        logger.info("Token refresh task started (interval: %ss)", interval_seconds)

    async def stop(self) -> None:
        """Stop the background sweep task."""
        self._running = False
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        logger.info("Token refresh task stopped")

    async def _loop(self, interval_seconds: float, run_immediately: bool) -> None:
        if not run_immediately:
            await asyncio.sleep(interval_seconds)

        while self._running:
            try:
                await self.refresh_all()
            except Exception as e:
                logger.exception("Error during scheduled token refresh: %s", e)

            await asyncio.sleep(interval_seconds)
