"""Delivery service - fan one job's message out to every active channel of its module."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from notifier.errors import ChannelSendError
from notifier.services.channel_config_service import ChannelConfigService
from notifier.services.channel_sender import ChannelSender
from notifier.services.queue_service import ClaimedJob

logger = logging.getLogger(__name__)

Heartbeat = Callable[[], Awaitable[bool]]


@dataclass(frozen=True)
class ChannelResult:
    channel_id: int
    channel_name: str
    success: bool
    message_id: int | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "channel_id": self.channel_id,
            "channel_name": self.channel_name,
            "success": self.success,
        }
        if self.message_id is not None:
            data["message_id"] = self.message_id
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class DeliveryOutcome:
    module_key: str
    results: list[ChannelResult] = field(default_factory=list)
    retry_after: int | None = None
    lease_lost: bool = False
    detail: str | None = None

    @property
    def total_channels(self) -> int:
        return len(self.results)

    @property
    def sent_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed_count(self) -> int:
        return self.total_channels - self.sent_count

    @property
    def success(self) -> bool:
        # At least one channel delivered; otherwise the whole job is retried.
        return self.sent_count > 0

    def error_summary(self) -> str:
        if self.detail:
            return self.detail
        errors = [f"channel {r.channel_id}: {r.error}" for r in self.results if not r.success and r.error]
        return "; ".join(errors) or "all channel sends failed"

    def to_dict(self) -> dict[str, Any]:
        return {
            "module": self.module_key,
            "total_channels": self.total_channels,
            "sent_count": self.sent_count,
            "failed_count": self.failed_count,
            "results": [r.to_dict() for r in self.results],
            "message": (
                f"Message sent to all {self.sent_count} channel(s)"
                if self.total_channels and self.sent_count == self.total_channels
                else f"Message sent to {self.sent_count} of {self.total_channels} channel(s)"
            ),
        }


class DeliveryService:
    def __init__(
        self,
        channels: ChannelConfigService,
        sender: ChannelSender,
        *,
        send_spacing_ms: int = 50,
    ):
        self.channels = channels
        self.sender = sender
        self.send_spacing_ms = int(send_spacing_ms)

    async def deliver(self, job: ClaimedJob, *, heartbeat: Optional[Heartbeat] = None) -> DeliveryOutcome:
        """
        Resolve the module's active channels now and attempt one send per channel.

        Channel failures are isolated: each is recorded and the loop moves on.
        The lease is renewed after every send; if renewal fails the remaining
        channels are skipped because another worker now owns the job.
        """
        outcome = DeliveryOutcome(module_key=job.module_key)
        configs = await self.channels.get_active_channels(job.module_key)
        if not configs:
            outcome.detail = f"No active channel configuration found for module: {job.module_key}"
            return outcome

        for index, config in enumerate(configs):
            name = str(config.display_name or config.module_key)
            destination = job.explicit_chat_id or config.target_chat_id
            if not destination:
                outcome.results.append(
                    ChannelResult(
                        channel_id=int(config.id),
                        channel_name=name,
                        success=False,
                        error=f"chat id not set for channel {config.id}",
                    )
                )
                continue

            try:
                receipt = await self.sender.send(
                    str(config.endpoint_token),
                    destination,
                    job.message,
                    parse_mode=job.parse_mode,
                )
                outcome.results.append(
                    ChannelResult(
                        channel_id=int(config.id),
                        channel_name=name,
                        success=True,
                        message_id=receipt.message_id,
                    )
                )
            except ChannelSendError as e:
                if e.retry_after:
                    outcome.retry_after = max(outcome.retry_after or 0, int(e.retry_after))
                log = logger.warning if e.retryable else logger.error
                log(f"Send to channel {config.id} for module {job.module_key} failed (job {job.id}): {e.reason}")
                outcome.results.append(
                    ChannelResult(channel_id=int(config.id), channel_name=name, success=False, error=e.reason)
                )
            except Exception as e:
                logger.warning(
                    f"Unexpected error sending to channel {config.id} for module {job.module_key} (job {job.id}): {e}"
                )
                outcome.results.append(
                    ChannelResult(channel_id=int(config.id), channel_name=name, success=False, error=str(e)[:2000])
                )

            if heartbeat is not None and not await heartbeat():
                outcome.lease_lost = True
                logger.error(f"Lease on job {job.id} lost mid-delivery; skipping remaining channels")
                break

            # Small gap between consecutive sends.
            if self.send_spacing_ms and index < len(configs) - 1:
                await asyncio.sleep(self.send_spacing_ms / 1000)

        return outcome
