"""Daemon status and shutdown endpoints."""

import uuid

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from toki.api.deps import get_daemon
from toki.core.logging import get_logger
from toki.services.tracker import TrackerDaemon

logger = get_logger(__name__)

router = APIRouter()


class StatusResponse(BaseModel):
    """Daemon status as seen by IPC clients."""

    running: bool
    current_window: str | None = None
    current_project: str | None = None
    current_issue: str | None = None
    session_id: uuid.UUID | None = None
    session_duration_seconds: int = 0


class ShutdownResponse(BaseModel):
    accepted: bool


@router.get("/status", response_model=StatusResponse)
async def get_status(daemon: TrackerDaemon = Depends(get_daemon)) -> StatusResponse:
    snapshot = await daemon.status()
    return StatusResponse(
        running=snapshot.running,
        current_window=snapshot.current_window,
        current_project=snapshot.current_project,
        current_issue=snapshot.current_issue,
        session_id=snapshot.session_id,
        session_duration_seconds=snapshot.session_duration_seconds(),
    )


@router.post("/shutdown", response_model=ShutdownResponse)
async def shutdown(daemon: TrackerDaemon = Depends(get_daemon)) -> ShutdownResponse:
    """Ask the daemon to stop after its current tick."""
    logger.info("Shutdown requested over IPC")
    daemon.request_shutdown()
    return ShutdownResponse(accepted=True)
