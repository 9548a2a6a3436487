"""Toki daemon - main entry point."""

import asyncio
import signal

from pydantic import ValidationError

from toki.api.app import create_ipc_server
from toki.core.config import ConfigurationError, Settings, get_settings
from toki.core.logging import get_logger, log_error, setup_logging
from toki.core.scheduler import create_tick_scheduler, start_scheduler, stop_scheduler
from toki.db.store import Store, StoreError
from toki.services.monitor import get_platform_monitor
from toki.services.tracker import TrackerDaemon

logger = get_logger(__name__)


async def run_daemon(settings: Settings) -> None:
    """Run the tracker and IPC server until a shutdown is requested."""
    store = await Store.open(settings)
    daemon = TrackerDaemon(store, get_platform_monitor(), settings=settings)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, daemon.request_shutdown)

    server = create_ipc_server(daemon, settings.socket_path)
    server_task = asyncio.create_task(server.serve(), name="toki-ipc")
    scheduler = create_tick_scheduler(daemon.tick, settings.tick_interval_seconds)

    try:
        await daemon.start()
        start_scheduler(scheduler)
        logger.info(
            "Toki daemon running",
            extra={
                "event_type": "startup",
                "data_dir": str(settings.data_dir),
                "socket": str(settings.socket_path),
            },
        )
        await daemon.shutdown_event.wait()
    finally:
        stop_scheduler(scheduler)
        await daemon.shutdown()
        server.should_exit = True
        await server_task
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        await store.close()
        if settings.socket_path.exists():
            settings.socket_path.unlink()
        logger.info("Toki daemon shut down gracefully", extra={"event_type": "shutdown"})


def main() -> int:
    """Console entry point for ``toki-daemon``."""
    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"Configuration error: {e}")
        return 2

    setup_logging(level=settings.log_level, json_logs=settings.json_logs)

    try:
        asyncio.run(run_daemon(settings))
    except (ConfigurationError, StoreError) as e:
        log_error(logger, "Daemon failed to start", error=e)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
