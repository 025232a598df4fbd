"""Channel configuration store - destinations bound to notification modules."""
import logging
from typing import Optional

from sqlalchemy import select, delete

from database.db import Database
from database.models import ChannelConfig, NotificationModule
from notifier.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = (
    "module_key",
    "endpoint_token",
    "target_chat_id",
    "display_name",
    "contact_name",
    "contact_phone",
    "description",
    "is_active",
)


class ChannelConfigService:
    """
    Read path used by dispatch and delivery, plus the admin mutations.

    Administrators edit configs out of band; the worker always re-reads them
    when a job executes, so edits apply to the next execution.
    """

    def __init__(self, db: Database):
        self.db = db

    async def get_active_channels(self, module_key: str) -> list[ChannelConfig]:
        """Active configs for a module, newest first. Empty list when none exist."""
        async with self.db.session() as session:
            result = await session.execute(
                select(ChannelConfig)
                .where(ChannelConfig.module_key == str(module_key), ChannelConfig.is_active.is_(True))
                .order_by(ChannelConfig.created_at.desc(), ChannelConfig.id.desc())
            )
            return list(result.scalars().all())

    async def list_for_module(self, module_key: str) -> list[ChannelConfig]:
        async with self.db.session() as session:
            result = await session.execute(
                select(ChannelConfig)
                .where(ChannelConfig.module_key == str(module_key))
                .order_by(ChannelConfig.created_at.desc(), ChannelConfig.id.desc())
            )
            return list(result.scalars().all())

    async def get(self, config_id: int) -> Optional[ChannelConfig]:
        async with self.db.session() as session:
            return await session.get(ChannelConfig, int(config_id))

    async def create(
        self,
        *,
        module_key: str,
        endpoint_token: str,
        target_chat_id: str | int | None = None,
        display_name: Optional[str] = None,
        contact_name: Optional[str] = None,
        contact_phone: Optional[str] = None,
        description: Optional[str] = None,
        is_active: bool = True,
    ) -> ChannelConfig:
        """
        Bind a new destination to an existing, active module.

        Raises:
            ValueError: missing token, or unknown/inactive module
        """
        module_key = (module_key or "").strip()
        endpoint_token = (endpoint_token or "").strip()
        if not endpoint_token:
            raise ValueError("endpoint_token is required")
        if not module_key:
            raise ValueError("module_key is required")

        async with self.db.session() as session:
            await self._require_module(session, module_key)
            now = utcnow()
            config = ChannelConfig(
                module_key=module_key,
                endpoint_token=endpoint_token,
                target_chat_id=str(target_chat_id) if target_chat_id not in (None, "") else None,
                display_name=display_name,
                contact_name=contact_name,
                contact_phone=contact_phone,
                description=description,
                is_active=bool(is_active),
                created_at=now,
                updated_at=now,
            )
            session.add(config)
            await session.flush()
            logger.info(f"Channel config {config.id} created for module {module_key}")
            return config

    async def update(self, config_id: int, **changes) -> Optional[ChannelConfig]:
        """Patch the given fields; returns None when the config does not exist."""
        unknown = set(changes) - set(_UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"unknown channel config fields: {sorted(unknown)}")

        async with self.db.session() as session:
            config = await session.get(ChannelConfig, int(config_id))
            if not config:
                return None

            if "module_key" in changes:
                await self._require_module(session, str(changes["module_key"] or "").strip())
            if "endpoint_token" in changes and not str(changes["endpoint_token"] or "").strip():
                raise ValueError("endpoint_token must not be empty")
            if "target_chat_id" in changes and changes["target_chat_id"] not in (None, ""):
                changes["target_chat_id"] = str(changes["target_chat_id"])

            for field, value in changes.items():
                setattr(config, field, value)
            config.updated_at = utcnow()
            return config

    async def set_active(self, config_id: int, is_active: bool) -> bool:
        config = await self.update(config_id, is_active=bool(is_active))
        return config is not None

    async def delete(self, config_id: int) -> bool:
        async with self.db.session() as session:
            result = await session.execute(delete(ChannelConfig).where(ChannelConfig.id == int(config_id)))
            return bool(result.rowcount)

    async def _require_module(self, session, module_key: str) -> None:
        result = await session.execute(
            select(NotificationModule.id).where(
                NotificationModule.module_key == module_key,
                NotificationModule.is_active.is_(True),
            )
        )
        if result.scalar_one_or_none() is None:
            raise ValueError(f"module '{module_key}' not found or inactive")
