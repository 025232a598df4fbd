"""Dispatch service - validate a notification request and durably queue it."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from notifier.errors import DispatchErrorCode, QueuePersistError
from notifier.services.channel_config_service import ChannelConfigService
from notifier.services.channel_sender import PARSE_MODES
from notifier.services.queue_service import QueueService
from notifier.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

DEFAULT_PRIORITY = 1
MAX_DELAY_MS = 7 * 24 * 3600 * 1000


@dataclass(frozen=True)
class DispatchOptions:
    chat_id: str | int | None = None
    priority: int | None = None
    delay_ms: int | None = None
    parse_mode: str | None = None


@dataclass(frozen=True)
class DispatchResult:
    success: bool
    job_id: Optional[int] = None
    queued: bool = False
    error: Optional[DispatchErrorCode] = None
    detail: Optional[str] = None
    total_channels: int = 0

    @classmethod
    def rejected(cls, error: DispatchErrorCode, detail: str, *, total_channels: int = 0) -> "DispatchResult":
        return cls(success=False, queued=False, error=error, detail=detail, total_channels=total_channels)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "queued": self.queued,
            "total_channels": self.total_channels,
        }
        if self.job_id is not None:
            data["jobId"] = str(self.job_id)
        if self.error is not None:
            data["error"] = self.error.value
        if self.detail:
            data["detail"] = self.detail
        return data


class DispatchService:
    """
    Entry point for event producers.

    Validation order: non-empty module/message, then at least one active
    channel, then one durable job. Fan-out happens later, in the worker.
    """

    def __init__(self, channels: ChannelConfigService, queue: QueueService):
        self.channels = channels
        self.queue = queue

    async def dispatch(
        self,
        module_key: str,
        message: str,
        options: DispatchOptions | None = None,
    ) -> DispatchResult:
        options = options or DispatchOptions()

        if not isinstance(module_key, str) or not module_key.strip():
            return DispatchResult.rejected(DispatchErrorCode.INVALID_REQUEST, "module and message are required")
        if not isinstance(message, str) or not message.strip():
            return DispatchResult.rejected(DispatchErrorCode.INVALID_REQUEST, "module and message are required")

        module_key = module_key.strip()

        try:
            priority = DEFAULT_PRIORITY if options.priority is None else int(options.priority)
            delay_ms = int(options.delay_ms or 0)
        except (TypeError, ValueError):
            return DispatchResult.rejected(DispatchErrorCode.INVALID_REQUEST, "priority and delay must be integers")
        delay_ms = max(0, min(delay_ms, MAX_DELAY_MS))

        if options.parse_mode is not None and options.parse_mode not in PARSE_MODES:
            return DispatchResult.rejected(
                DispatchErrorCode.INVALID_REQUEST, f"parse_mode must be one of {'|'.join(PARSE_MODES)}"
            )

        try:
            configs = await self.channels.get_active_channels(module_key)
        except Exception as e:
            logger.error(f"Error reading channel configs for module {module_key}: {e}")
            return DispatchResult.rejected(DispatchErrorCode.QUEUE_PERSIST_FAILURE, "configuration store unavailable")

        if not configs:
            return DispatchResult.rejected(
                DispatchErrorCode.NO_ACTIVE_CHANNEL,
                f"No active channel configuration found for module: {module_key}",
            )

        try:
            job_id = await self.queue.enqueue(
                module_key=module_key,
                message=message,
                explicit_chat_id=options.chat_id,
                parse_mode=options.parse_mode,
                priority=priority,
                delay_ms=delay_ms,
            )
        except QueuePersistError as e:
            logger.error(f"Error adding message to queue for module {module_key}: {e}")
            return DispatchResult.rejected(
                DispatchErrorCode.QUEUE_PERSIST_FAILURE,
                "Failed to queue message",
                total_channels=len(configs),
            )

        return DispatchResult(
            success=True,
            job_id=job_id,
            queued=True,
            detail="Message queued successfully. Will be sent shortly.",
            total_channels=len(configs),
        )

    async def dispatch_formatted(
        self,
        module_key: str,
        message: str,
        *,
        parse_mode: str = "HTML",
        chat_id: str | int | None = None,
        priority: int | None = None,
        delay_ms: int | None = None,
    ) -> DispatchResult:
        return await self.dispatch(
            module_key,
            message,
            DispatchOptions(chat_id=chat_id, priority=priority, delay_ms=delay_ms, parse_mode=parse_mode),
        )

    async def notify_new_user_signup(self, user: Mapping[str, Any]) -> DispatchResult:
        return await self.dispatch("new_user_signup", format_new_user_signup(user))

    async def notify_order_details(self, order: Mapping[str, Any]) -> DispatchResult:
        return await self.dispatch("order_details", format_order_details(order))


def _field(data: Mapping[str, Any], *keys: str, default: str = "N/A") -> str:
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return str(value)
    return default


def format_new_user_signup(user: Mapping[str, Any]) -> str:
    return (
        "🎉 New User Signup!\n\n"
        f"Name: {_field(user, 'name', 'username')}\n"
        f"Email: {_field(user, 'email')}\n"
        f"Phone: {_field(user, 'phone')}\n"
        f"Time: {utcnow().strftime('%Y-%m-%d %H:%M:%S')} UTC"
    )


def format_order_details(order: Mapping[str, Any]) -> str:
    amount = f"{_field(order, 'total_amount', 'amount', default='0')} {_field(order, 'currency', default='')}".strip()
    return (
        "📦 New Order!\n\n"
        f"Order ID: {_field(order, 'order_id', 'id')}\n"
        f"Customer: {_field(order, 'customer_name', 'user_name')}\n"
        f"Amount: {amount}\n"
        f"Items: {_field(order, 'items_count')}\n"
        f"Status: {_field(order, 'status')}\n"
        f"Time: {utcnow().strftime('%Y-%m-%d %H:%M:%S')} UTC"
    )
