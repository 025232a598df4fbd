"""Shared test fixtures: isolated SQLite database, controllable clock, recording channel sender."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from database.db import Database
from notifier.config import Config
from notifier.container import ServiceContainer
from notifier.errors import ChannelSendError
from notifier.services.channel_config_service import ChannelConfigService
from notifier.services.channel_sender import SendReceipt
from notifier.services.delivery_service import DeliveryService
from notifier.services.dispatch_service import DispatchService
from notifier.services.module_registry import ModuleRegistry
from notifier.services.queue_service import QueueService, RetentionPolicy, RetryPolicy
from notifier.worker import WorkerPool


class FakeClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class FakeSender:
    """
    Records every send. Per-token scripts decide the outcome of successive
    calls: an exception instance is raised, anything else means success.
    Tokens without a script (or with an exhausted one) always succeed.
    """

    def __init__(self):
        self.calls: list[dict[str, Any]] = []
        self.scripts: dict[str, list[Any]] = defaultdict(list)
        self.closed = False

    def fail(self, token: str, times: int, *, reason: str = "boom", retry_after: int | None = None) -> None:
        self.scripts[token].extend(ChannelSendError(reason, retry_after=retry_after) for _ in range(times))

    async def send(self, token, destination, text, *, parse_mode=None) -> SendReceipt:
        self.calls.append({"token": token, "destination": destination, "text": text, "parse_mode": parse_mode})
        script = self.scripts.get(token)
        if script:
            outcome = script.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
        return SendReceipt(message_id=len(self.calls), chat_id=str(destination))

    async def close(self) -> None:
        self.closed = True

    def tokens(self) -> list[str]:
        return [c["token"] for c in self.calls]


@pytest.fixture
async def db(tmp_path: Path):
    """Fresh file-backed SQLite database with all tables created."""
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'notifier.db'}")
    await database.create_tables()
    try:
        yield database
    finally:
        await database.disconnect()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sender() -> FakeSender:
    return FakeSender()


@pytest.fixture
def registry(db: Database) -> ModuleRegistry:
    return ModuleRegistry(db)


@pytest.fixture
def channels(db: Database) -> ChannelConfigService:
    return ChannelConfigService(db)


@pytest.fixture
def queue(db: Database, clock: FakeClock) -> QueueService:
    return QueueService(
        db,
        retry_policy=RetryPolicy(max_attempts=5, base_seconds=2, max_seconds=3600),
        retention=RetentionPolicy(completed_seconds=24 * 3600, completed_count=1000, failed_seconds=7 * 24 * 3600),
        lease_seconds=60,
        clock=clock,
        worker_id="test-worker",
    )


@pytest.fixture
def delivery(channels: ChannelConfigService, sender: FakeSender) -> DeliveryService:
    return DeliveryService(channels, sender, send_spacing_ms=0)


@pytest.fixture
def dispatcher(channels: ChannelConfigService, queue: QueueService) -> DispatchService:
    return DispatchService(channels, queue)


@pytest.fixture
def pool(queue: QueueService, delivery: DeliveryService) -> WorkerPool:
    return WorkerPool(queue, delivery, concurrency=1, poll_interval_seconds=0.01, maintenance_interval_seconds=0.05)


@pytest.fixture
async def order_modules(registry: ModuleRegistry) -> dict[str, int]:
    """`order` category with `order_completed` and `order_details` sub-modules."""
    root = await registry.create_module(module_key="order", module_name="Order", sort_order=1)
    completed = await registry.create_module(
        module_key="order_completed", module_name="Completed Order", parent_module_id=root.id, sort_order=1
    )
    details = await registry.create_module(
        module_key="order_details", module_name="New Order Details", parent_module_id=root.id, sort_order=2
    )
    return {"order": root.id, "order_completed": completed.id, "order_details": details.id}


@pytest.fixture
def container(db: Database, queue: QueueService, sender: FakeSender) -> ServiceContainer:
    config = Config(
        database_url=db.database_url,
        channel_send_spacing_ms=0,
        run_worker_in_process=False,
        auto_create_schema=True,
    )
    return ServiceContainer.create(config, db=db, channel_sender=sender, queue_service=queue)
