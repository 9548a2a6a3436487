"""IPC app served on the daemon's unix socket."""

import contextlib
from collections.abc import Iterator
from pathlib import Path

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from toki import __version__
from toki.api.middleware import RequestLoggingMiddleware
from toki.api.routes import health, status
from toki.core.logging import get_logger, log_error
from toki.services.tracker import TrackerDaemon

logger = get_logger(__name__)


def create_ipc_app(daemon: TrackerDaemon) -> FastAPI:
    """FastAPI app exposing status, shutdown and health for one daemon."""
    app = FastAPI(
        title="Toki daemon IPC",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.daemon = daemon
    app.add_middleware(RequestLoggingMiddleware)
    app.include_router(status.router, tags=["Status"])
    app.include_router(health.router, tags=["Health"])

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        log_error(
            logger,
            "Unhandled IPC exception",
            error=exc,
            extra={"path": request.url.path, "method": request.method},
        )
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    return app


class IpcServer(uvicorn.Server):
    """uvicorn server that leaves SIGINT/SIGTERM to the daemon's own handlers."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


def create_ipc_server(daemon: TrackerDaemon, socket_path: Path) -> IpcServer:
    """Server bound to ``socket_path``; a stale socket file is removed first."""
    if socket_path.exists():
        socket_path.unlink()
    config = uvicorn.Config(
        create_ipc_app(daemon),
        uds=str(socket_path),
        log_level="warning",
        access_log=False,
        lifespan="off",
    )
    return IpcServer(config)
