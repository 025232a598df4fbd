"""Standalone worker process - consumes the notification queue without the HTTP API."""
import asyncio
import logging
import signal
import sys

from notifier.config import Config
from notifier.container import ServiceContainer


def configure_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler("notifier.log"),
        ],
    )


logger = logging.getLogger(__name__)


class NotifierWorker:
    """Owns the container lifecycle for a worker-only process."""

    def __init__(self, config: Config):
        self.config = config
        self.container: ServiceContainer | None = None
        self._running = False
        self._stop_event: asyncio.Event | None = None

    async def initialize(self):
        """Initialize all components."""
        logger.info("=" * 70)
        logger.info("📨 NOTIFICATION WORKER - INITIALIZING")
        logger.info("=" * 70)

        try:
            self.container = ServiceContainer.create(self.config)
            await self.container.init()
            logger.info("✅ Database and services initialized")
            logger.info(f"📊 Table counts: {await self.container.db.get_table_counts()}")
        except Exception as e:
            logger.error(f"❌ Failed to initialize worker: {e}", exc_info=True)
            raise

    async def start(self):
        if self._running:
            logger.warning("Worker is already running")
            return
        if not self.container:
            await self.initialize()

        self._running = True
        self._stop_event = asyncio.Event()
        await self.container.worker_pool.start()

        stats = await self.container.queue_service.get_stats()
        logger.info(f"⚙️  Concurrency: {self.config.worker_concurrency}, max attempts: {self.config.max_attempts}")
        logger.info(f"📊 Queue on start: {stats.to_dict()}")
        logger.info("✅ WORKER IS RUNNING")

    async def stop(self):
        if not self._running:
            logger.warning("Worker is not running")
            return

        logger.info("🛑 Stopping worker...")
        self._running = False
        if self._stop_event:
            self._stop_event.set()
        if self.container:
            await self.container.cleanup()
        logger.info("✅ Worker stopped")

    async def run_forever(self):
        await self.start()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._stop_event.set)
            except NotImplementedError:
                pass

        try:
            await self._stop_event.wait()
        finally:
            if self._running:
                await self.stop()

    def is_running(self) -> bool:
        return self._running


async def main():
    """Main entry point for the worker process."""
    configure_logging()
    try:
        config = Config.from_env()
        logger.info("✅ Configuration loaded")

        worker = NotifierWorker(config)
        await worker.initialize()
        await worker.run_forever()
    except KeyboardInterrupt:
        logger.info("⌨️  Worker stopped by user")
    except Exception as e:
        logger.error(f"❌ Fatal error: {e}", exc_info=True)
        sys.exit(1)


def cli():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("⌨️  Worker stopped by user")


if __name__ == "__main__":
    cli()
