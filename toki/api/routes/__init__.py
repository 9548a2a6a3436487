"""IPC routes."""

from toki.api.routes import health, status

__all__ = ["health", "status"]
