"""Client for the daemon's IPC socket."""

from pathlib import Path
from typing import Any

import httpx

from toki.api.routes.status import StatusResponse
from toki.core.config import Settings, get_settings


class DaemonNotRunningError(Exception):
    """No daemon is listening on the socket."""


class IpcClient:
    """Talks to a running daemon over its unix socket."""

    def __init__(
        self,
        socket_path: Path,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.socket_path = socket_path
        self._transport = transport
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "IpcClient":
        settings = settings or get_settings()
        return cls(settings.socket_path)

    async def _request(self, method: str, path: str) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                transport=self._transport or httpx.AsyncHTTPTransport(uds=str(self.socket_path)),
                base_url="http://toki",
                timeout=self._timeout,
            ) as client:
                response = await client.request(method, path)
                response.raise_for_status()
                data: dict[str, Any] = response.json()
                return data
        except (httpx.ConnectError, FileNotFoundError) as e:
            raise DaemonNotRunningError(f"No daemon listening on {self.socket_path}") from e

    async def status(self) -> StatusResponse:
        return StatusResponse.model_validate(await self._request("GET", "/status"))

    async def shutdown(self) -> bool:
        data = await self._request("POST", "/shutdown")
        return bool(data.get("accepted"))

    async def health(self) -> dict[str, Any]:
        return await self._request("GET", "/health")
