"""Ingestion endpoint for normalised playback events."""

import logging
from typing import Any

from fastapi import APIRouter, Request

from ..models import NormalizedEvent
from ..sync import SyncEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["events"])


def get_engine(request: Request) -> SyncEngine:
    """Get the sync engine from app state."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise RuntimeError("SyncEngine not initialized in app state")
    return engine


@router.post("/events")
async def receive_event(event: NormalizedEvent, request: Request) -> dict[str, Any]:
    """Relay one playback event to the user's tracking services.

    The body must already be normalised by a media server webhook parser.
    """
    logger.debug(
        "[%s] Event %s for %s: %s",
        event.source.value,
        event.status.value,
        event.user_identity,
        event.media.title,
    )
    entry = await get_engine(request).sync_event(event)
    if entry is None:
        return {"status": "ignored", "entry": None}
    return {"status": "recorded", "entry": entry.model_dump(mode="json")}
