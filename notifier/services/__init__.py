"""Services package - business logic layer."""
from notifier.services.module_registry import ModuleRegistry
from notifier.services.channel_config_service import ChannelConfigService
from notifier.services.queue_service import QueueService, QueueStats, JobState
from notifier.services.channel_sender import ChannelSender, TelegramChannelSender
from notifier.services.delivery_service import DeliveryService
from notifier.services.dispatch_service import DispatchService, DispatchOptions, DispatchResult

__all__ = [
    "ModuleRegistry",
    "ChannelConfigService",
    "QueueService",
    "QueueStats",
    "JobState",
    "ChannelSender",
    "TelegramChannelSender",
    "DeliveryService",
    "DispatchService",
    "DispatchOptions",
    "DispatchResult",
]
