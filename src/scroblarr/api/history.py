"""Sync history and token maintenance endpoints."""

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel

from ..database import get_db
from ..models import MediaType, RefreshOutcome, SyncHistoryEntry
from ..sync import TokenRefreshService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["history"])


class HistoryPage(BaseModel):
    """One page of a user's sync history."""

    entries: list[SyncHistoryEntry]
    total: int
    page: int
    page_size: int


class DeleteHistoryRequest(BaseModel):
    """Entry ids to delete; omitted means the whole history."""

    ids: list[int] | None = None


async def _require_user(user_id: str) -> None:
    db = await get_db()
    if await db.get_user(user_id) is None:
        raise HTTPException(status_code=404, detail=f"User {user_id} not found")


@router.get("/users/{user_id}/history", response_model=HistoryPage)
async def get_history(
    user_id: str,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=500),
    media_type: MediaType | None = None,
    success: bool | None = None,
    source: str | None = None,
    sort_by: str = "synced_at",
    sort_order: str = "DESC",
) -> HistoryPage:
    """Paginated, filterable sync history of one user."""
    await _require_user(user_id)
    db = await get_db()
    entries, total = await db.get_sync_history_page(
        user_id,
        page=page,
        page_size=page_size,
        media_type=media_type,
        success=success,
        source=source,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return HistoryPage(entries=entries, total=total, page=page, page_size=page_size)


@router.get("/users/{user_id}/history/stats")
async def get_history_stats(user_id: str) -> dict[str, Any]:
    """Aggregate statistics over a user's retained history."""
    await _require_user(user_id)
    db = await get_db()
    return await db.get_sync_stats_by_user(user_id)


@router.delete("/users/{user_id}/history")
async def delete_history(user_id: str, body: DeleteHistoryRequest | None = None) -> dict[str, Any]:
    """Delete selected entries, or the user's whole history."""
    await _require_user(user_id)
    db = await get_db()
    if body is not None and body.ids is not None:
        deleted = await db.delete_sync_history_entries(body.ids, user_id)
    else:
        deleted = await db.clear_sync_history(user_id)
    logger.info("Deleted %d sync history entries for user %s", deleted, user_id)
    return {"deleted": deleted}


@router.post("/tokens/refresh")
async def refresh_tokens(request: Request) -> list[RefreshOutcome]:
    """Run a credential refresh sweep now."""
    service: TokenRefreshService | None = getattr(request.app.state, "refresh_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Token refresh service not initialized")
    logger.info("Manual token refresh requested")
    return await service.refresh_all()
