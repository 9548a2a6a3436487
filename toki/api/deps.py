"""IPC dependencies."""

from fastapi import Request

from toki.services.tracker import TrackerDaemon


def get_daemon(request: Request) -> TrackerDaemon:
    """The tracker daemon the IPC app was created for."""
    daemon: TrackerDaemon = request.app.state.daemon
    return daemon
