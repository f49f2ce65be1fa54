"""Entry point for a headless sync worker: settings -> logging -> hub -> wait for shutdown."""

import asyncio
import logging
import signal
from pathlib import Path

from dotenv import load_dotenv

from flowcore.hub import IntegrationHub
from flowcore.logging_config import setup_logging
from flowcore.settings import load_settings, validate_settings

_PROJECT_ROOT = Path(__file__).resolve().parent.parent

logger = logging.getLogger(__name__)


def _install_signal_handlers(shutdown_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown_event.set)
        except (NotImplementedError, RuntimeError):
            pass  # Windows: KeyboardInterrupt still reaches main()


async def main_async(project_root: Path = _PROJECT_ROOT) -> None:
    """Bootstrap: settings -> logging -> hub.start -> wait for shutdown -> hub.stop."""
    settings = load_settings(project_root / "config")
    setup_logging(project_root, settings)
    problems = validate_settings(settings)
    if problems:
        for problem in problems:
            logger.error("Invalid settings: %s", problem)
        raise SystemExit(1)
    hub = IntegrationHub.from_settings(settings, project_root)
    shutdown_event = asyncio.Event()
    _install_signal_handlers(shutdown_event)
    await hub.start()
    status = hub.get_sync_status()
    logger.info(
        "flowcore running: online=%s, %d pending operation(s)",
        status.is_online,
        status.queue_length,
    )
    try:
        await shutdown_event.wait()
    except asyncio.CancelledError:
        pass
    finally:
        await hub.stop()


def main() -> None:
    """Synchronous entry for the sync worker process."""
    load_dotenv(_PROJECT_ROOT / ".env")
    try:
        asyncio.run(main_async())
    except KeyboardInterrupt:
        pass


__all__ = ["main", "main_async"]
