"""Health check endpoint."""

from typing import Any

from fastapi import APIRouter, Depends

from toki import __version__
from toki.api.deps import get_daemon
from toki.services.tracker import TrackerDaemon

router = APIRouter()


@router.get("/health")
async def health(daemon: TrackerDaemon = Depends(get_daemon)) -> dict[str, Any]:
    """Liveness plus tick counter, for ``toki status`` style checks."""
    snapshot = await daemon.status()
    return {
        "status": "healthy" if snapshot.running else "stopping",
        "version": __version__,
        "ticks": daemon.tick_count,
    }
