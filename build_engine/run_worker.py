# build_engine/run_worker.py
"""Run a build worker that processes queued build jobs."""

import logging
import signal
import sys
import time

from build_engine.container import build_container
from build_engine.settings import settings

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


def main():
    """Main entry point."""
    container = build_container(
        settings,
        persistence=settings.persistence_backend,
        clients=settings.client_backend,
    )
    executor = container.make_executor()

    def signal_handler(sig, frame):
        logger.info("🛑 Shutting down worker...")
        executor.stop()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    logger.info("=" * 80)
    logger.info("🚀 BUILD ENGINE WORKER")
    logger.info("=" * 80)
    logger.info(f"Worker ID: {executor.worker_id}")
    logger.info(f"Slots: {executor.slots.total_slots()}")
    logger.info(f"Uploads bucket: {settings.uploads_bucket}")
    logger.info(f"Static bucket: {settings.static_bucket}")
    logger.info("")
    logger.info("Press Ctrl+C to stop")
    logger.info("=" * 80)

    executor.start()

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("🛑 Shutting down worker...")
        executor.stop()


if __name__ == "__main__":
    main()
