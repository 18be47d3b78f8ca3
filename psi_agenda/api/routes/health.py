"""Health check endpoints."""

from fastapi import APIRouter, Request
from sqlalchemy import text

from psi_agenda import __version__

router = APIRouter()


@router.get("/health")
async def health_check() -> dict:
    """Basic health check."""
    return {
        "status": "healthy",
        "service": "psi-agenda",
        "version": __version__,
    }


@router.get("/health/live")
async def liveness_check() -> dict:
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness_check(request: Request) -> dict:
    """Settings store reachable, plus background writer counters.

    Failed background writes do not make the service unready; they are
    reported so an operator can see that stored state is lagging.
    """
    registry = request.app.state.agenda_registry
    try:
        async with registry.session_factory() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        return {
            "status": "not_ready",
            "errors": [f"Database check failed: {e}"],
        }

    return {"status": "ready", **registry.stats()}
