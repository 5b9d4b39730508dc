"""Worker process: builds the import queue, polls until SIGINT/SIGTERM."""

from __future__ import annotations

import logging
import signal
import threading

from app.core.config import Settings, get_settings
from app.db.session import get_session_factory, init_db
from app.workers.import_queue import ImportJobQueue
from app.workers.processors.csv_catalog import CsvCatalogImporter
from app.workers.processors.platform import PlatformProcessor

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s",
    )


def build_queue(settings: Settings | None = None) -> ImportJobQueue:
    """Queue wired to the configured database with every platform adapter registered."""
    settings = settings or get_settings()
    session_factory = get_session_factory()
    queue = ImportJobQueue.from_settings(session_factory, settings)
    queue.register_processor(
        PlatformProcessor(
            queue.repository,
            {"csv": CsvCatalogImporter(session_factory)},
        )
    )
    return queue


def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    init_db()

    queue = build_queue(settings)
    shutdown = threading.Event()

    def _handler(signum, frame):
        logger.info(f"Received signal {signum}, stopping import queue")
        shutdown.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, _handler)

    queue.start()
    try:
        shutdown.wait()
    finally:
        queue.stop()
        grace = settings.import_worker_shutdown_grace_seconds
        if not queue.wait_for_idle(timeout=grace):
            logger.warning(f"Jobs still running after {grace}s; leaving them to finish on their own")
        queue.close(wait=False)
        logger.info("Import worker stopped")


if __name__ == "__main__":
    main()
