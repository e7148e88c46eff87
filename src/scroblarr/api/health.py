"""Health check endpoints for Kubernetes/Docker."""

from fastapi import APIRouter, Request, Response

from ..database import get_db

router = APIRouter(tags=["health"])


@router.get("/healthz")
async def healthz() -> Response:
    """
    Liveness probe for Kubernetes.

    Returns 200 if the service is alive.
    """
    return Response(content="ok", media_type="text/plain")


@router.get("/readyz")
async def readyz(request: Request) -> Response:
    """
    Readiness probe for Kubernetes.

    Returns 200 if the service is ready to accept traffic.
    Checks:
    - Database is connected
    - Sync engine is initialized
    """
    try:
        db = await get_db()
        if not db.is_connected:
            return Response(
                content="database not connected",
                status_code=503,
                media_type="text/plain",
            )

        if getattr(request.app.state, "engine", None) is None:
            return Response(
                content="engine not initialized",
                status_code=503,
                media_type="text/plain",
            )

        return Response(content="ok", media_type="text/plain")

    except Exception as e:
        return Response(
            content=f"error: {e}",
            status_code=503,
            media_type="text/plain",
        )
