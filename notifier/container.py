"""Service container - wires configuration, storage, channel sender, and domain services."""
import logging
from dataclasses import dataclass
from typing import Optional

from database.db import Database
from notifier.config import Config
from notifier.services.channel_config_service import ChannelConfigService
from notifier.services.channel_sender import ChannelSender, TelegramChannelSender
from notifier.services.delivery_service import DeliveryService
from notifier.services.dispatch_service import DispatchService
from notifier.services.module_registry import ModuleRegistry
from notifier.services.queue_service import QueueService, RetentionPolicy, RetryPolicy
from notifier.utils.rate_limiter import RateLimiter
from notifier.worker import WorkerPool

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Simple dependency container shared by the API server and the worker process."""

    config: Config
    db: Database
    module_registry: ModuleRegistry
    channel_config_service: ChannelConfigService
    queue_service: QueueService
    channel_sender: ChannelSender
    delivery_service: DeliveryService
    dispatch_service: DispatchService
    worker_pool: WorkerPool

    @classmethod
    def create(
        cls,
        config: Config,
        *,
        db: Optional[Database] = None,
        channel_sender: Optional[ChannelSender] = None,
        queue_service: Optional[QueueService] = None,
    ) -> "ServiceContainer":
        """
        Build the service container with all dependencies.

        Args:
            config: Loaded Config instance
            db: Database handle (a new one for config.database_url by default)
            channel_sender: Send capability (Telegram by default)
            queue_service: Pre-built queue (tests inject one with a fake clock)

        Returns:
            ServiceContainer with initialized services
        """
        logger.info("Building service container...")

        db = db or Database(config.database_url)
        module_registry = ModuleRegistry(db)
        channel_config_service = ChannelConfigService(db)
        queue_service = queue_service or QueueService(
            db,
            retry_policy=RetryPolicy(
                max_attempts=config.max_attempts,
                base_seconds=config.backoff_base_seconds,
                max_seconds=config.backoff_max_seconds,
            ),
            retention=RetentionPolicy(
                completed_seconds=config.completed_retention_seconds,
                completed_count=config.completed_retention_count,
                failed_seconds=config.failed_retention_seconds,
            ),
            lease_seconds=config.lease_seconds,
        )
        channel_sender = channel_sender or TelegramChannelSender(timeout_seconds=config.channel_send_timeout_seconds)
        delivery_service = DeliveryService(
            channel_config_service,
            channel_sender,
            send_spacing_ms=config.channel_send_spacing_ms,
        )
        dispatch_service = DispatchService(channel_config_service, queue_service)
        worker_pool = WorkerPool(
            queue_service,
            delivery_service,
            concurrency=config.worker_concurrency,
            poll_interval_seconds=config.poll_interval_seconds,
            maintenance_interval_seconds=config.maintenance_interval_seconds,
            rate_limiter=RateLimiter(config.rate_limit_jobs, config.rate_limit_window_seconds),
        )

        logger.info("Service container ready")

        return cls(
            config=config,
            db=db,
            module_registry=module_registry,
            channel_config_service=channel_config_service,
            queue_service=queue_service,
            channel_sender=channel_sender,
            delivery_service=delivery_service,
            dispatch_service=dispatch_service,
            worker_pool=worker_pool,
        )

    async def init(self) -> None:
        """Connect storage, prepare the schema and the queue."""
        await self.db.connect()
        if self.config.auto_create_schema:
            await self.db.create_tables()
        else:
            await self.db.require_schema()
        await self.queue_service.init()
        if self.config.seed_default_modules:
            await self.module_registry.seed_defaults()

    async def cleanup(self) -> None:
        """Stop workers, close channel sessions, dispose the engine."""
        try:
            await self.worker_pool.stop()
        except Exception as e:
            logger.warning(f"Error stopping worker pool: {e}")
        await self.queue_service.shutdown()
        try:
            await self.channel_sender.close()
        except Exception as e:
            logger.warning(f"Error closing channel sender: {e}")
        await self.db.disconnect()
        logger.info("Service container cleanup complete")
