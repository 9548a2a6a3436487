"""Platform activity monitor capability."""

import sys
import time
from dataclasses import dataclass
from typing import Protocol

from toki.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ActiveApp:
    """Foreground application sample."""

    app_bundle_id: str
    app_name: str | None = None
    window_title: str | None = None


class PlatformMonitor(Protocol):
    """Source of foreground-app and idle samples for the tracker.

    Implementations must return quickly; ``get_active_app`` returns None when
    no sample is available.
    """

    async def get_active_app(self) -> ActiveApp | None: ...

    async def get_idle_seconds(self) -> int: ...

    async def is_idle(self, threshold_seconds: int) -> bool: ...


class FallbackMonitor:
    """Placeholder monitor for platforms without a native backend.

    Reports a generic application and measures idle time from the last
    ``record_input`` call.
    """

    APP_BUNDLE_ID = "generic.placeholder"
    APP_NAME = "Placeholder"

    def __init__(self) -> None:
        self._last_input = time.monotonic()

    def record_input(self) -> None:
        self._last_input = time.monotonic()

    async def get_active_app(self) -> ActiveApp | None:
        return ActiveApp(app_bundle_id=self.APP_BUNDLE_ID, app_name=self.APP_NAME)

    async def get_idle_seconds(self) -> int:
        return max(int(time.monotonic() - self._last_input), 0)

    async def is_idle(self, threshold_seconds: int) -> bool:
        return await self.get_idle_seconds() >= threshold_seconds


def get_platform_monitor() -> PlatformMonitor:
    """Monitor for the current platform."""
    logger.info(
        "Using placeholder activity monitor",
        extra={"platform": sys.platform},
    )
    return FallbackMonitor()
