"""Module registry - hierarchical catalog of notification categories."""
import logging
from typing import Optional

from sqlalchemy import select, func, case
from sqlalchemy.exc import IntegrityError

from database.db import Database
from database.models import ChannelConfig, NotificationModule
from notifier.errors import ModuleHierarchyError

logger = logging.getLogger(__name__)


# (module_key, module_name, description, children[(module_key, module_name, description)])
DEFAULT_MODULES: list[tuple[str, str, str, list[tuple[str, str, str]]]] = [
    (
        "order",
        "Order",
        "Order-related notifications",
        [
            ("order_pending", "Pending Order", "Notifications for pending orders"),
            ("order_processing", "Processing Order", "Notifications for orders being processed"),
            ("order_completed", "Completed Order", "Notifications for completed orders"),
            ("order_failed", "Failed Order", "Notifications for failed orders"),
            ("order_cancelled", "Cancelled Order", "Notifications for cancelled orders"),
            ("order_details", "New Order Details", "Full details of newly placed orders"),
        ],
    ),
    (
        "user",
        "User",
        "User-related notifications",
        [
            ("new_user_signup", "New User Signup", "Notifications for new user registrations"),
            ("user_login", "User Login", "Notifications for user logins"),
            ("user_profile_update", "Profile Update", "Notifications for profile changes"),
        ],
    ),
    (
        "payment",
        "Payment",
        "Payment-related notifications",
        [
            ("payment_pending", "Pending Payment", "Notifications for pending payments"),
            ("payment_success", "Successful Payment", "Notifications for successful payments"),
            ("payment_failed", "Failed Payment", "Notifications for failed payments"),
            ("payment_refunded", "Refunded Payment", "Notifications for refunds"),
        ],
    ),
    (
        "inventory",
        "Inventory",
        "Inventory and stock notifications",
        [
            ("low_stock", "Low Stock", "Product stock fell below its threshold"),
            ("out_of_stock", "Out of Stock", "Product stock reached zero"),
            ("stock_restocked", "Restocked", "Product was restocked"),
        ],
    ),
]


class ModuleRegistry:
    """Read and maintain the module catalog (category -> sub-module)."""

    def __init__(self, db: Database):
        self.db = db

    async def get_by_key(self, module_key: str) -> Optional[NotificationModule]:
        async with self.db.session() as session:
            result = await session.execute(
                select(NotificationModule).where(NotificationModule.module_key == str(module_key))
            )
            return result.scalar_one_or_none()

    async def create_module(
        self,
        *,
        module_key: str,
        module_name: str,
        category: Optional[str] = None,
        parent_module_id: Optional[int] = None,
        description: Optional[str] = None,
        sort_order: int = 0,
        is_active: bool = True,
    ) -> NotificationModule:
        """
        Create a module.

        Raises:
            ValueError: empty key/name or duplicate module_key
            ModuleHierarchyError: parent_module_id does not reference an existing module
        """
        module_key = (module_key or "").strip()
        module_name = (module_name or "").strip()
        if not module_key or not module_name:
            raise ValueError("module_key and module_name are required")

        try:
            async with self.db.session() as session:
                if parent_module_id is not None:
                    parent = await session.get(NotificationModule, int(parent_module_id))
                    if parent is None:
                        raise ModuleHierarchyError(f"parent module {parent_module_id} does not exist")
                    if category is None:
                        category = parent.category

                module = NotificationModule(
                    module_key=module_key,
                    module_name=module_name,
                    category=category if category is not None else module_name,
                    parent_module_id=int(parent_module_id) if parent_module_id is not None else None,
                    description=description,
                    sort_order=int(sort_order or 0),
                    is_active=bool(is_active),
                )
                session.add(module)
                await session.flush()
                return module
        except IntegrityError as e:
            raise ValueError(f"module_key already exists: {module_key}") from e

    async def set_parent(self, module_id: int, parent_module_id: Optional[int]) -> NotificationModule:
        """Re-parent a module, rejecting unknown parents and cycles."""
        async with self.db.session() as session:
            module = await session.get(NotificationModule, int(module_id))
            if module is None:
                raise ModuleHierarchyError(f"module {module_id} does not exist")

            if parent_module_id is not None:
                # Walk up from the new parent; reaching module_id means a cycle.
                seen: set[int] = set()
                cursor: Optional[int] = int(parent_module_id)
                while cursor is not None:
                    if cursor == int(module_id):
                        raise ModuleHierarchyError(
                            f"setting parent {parent_module_id} on module {module_id} would create a cycle"
                        )
                    if cursor in seen:
                        raise ModuleHierarchyError(f"existing cycle detected at module {cursor}")
                    seen.add(cursor)
                    node = await session.get(NotificationModule, cursor)
                    if node is None:
                        raise ModuleHierarchyError(f"parent module {cursor} does not exist")
                    cursor = node.parent_module_id

            module.parent_module_id = int(parent_module_id) if parent_module_id is not None else None
            return module

    async def list_tree(self) -> list[dict]:
        """
        Active modules grouped as roots with their direct children.

        Roots and children are ordered by sort_order, then module_name.
        """
        async with self.db.session() as session:
            result = await session.execute(
                select(NotificationModule)
                .where(NotificationModule.is_active.is_(True))
                .order_by(NotificationModule.sort_order, NotificationModule.module_name)
            )
            modules = list(result.scalars().all())

        by_id = {int(m.id): m for m in modules}
        roots: list[dict] = []
        nodes: dict[int, dict] = {}
        for m in modules:
            if m.parent_module_id is None or int(m.parent_module_id) not in by_id:
                node = _module_dict(m)
                node["children"] = []
                nodes[int(m.id)] = node
                roots.append(node)
        for m in modules:
            parent_id = m.parent_module_id
            if parent_id is not None and int(parent_id) in nodes:
                nodes[int(parent_id)]["children"].append(_module_dict(m))
        return roots

    async def overview(self) -> list[dict]:
        """
        Per root module: how many channel configs (total / active) serve it.

        A root with children aggregates its children's configs; a standalone
        root counts its own.
        """
        tree = await self.list_tree()
        if not tree:
            return []

        async with self.db.session() as session:
            result = await session.execute(
                select(
                    ChannelConfig.module_key,
                    func.count(ChannelConfig.id),
                    func.sum(case((ChannelConfig.is_active.is_(True), 1), else_=0)),
                ).group_by(ChannelConfig.module_key)
            )
            counts = {str(key): (int(total or 0), int(active or 0)) for key, total, active in result.all()}

        out: list[dict] = []
        for root in tree:
            keys = [c["module_key"] for c in root["children"]] or [root["module_key"]]
            total = sum(counts.get(k, (0, 0))[0] for k in keys)
            active = sum(counts.get(k, (0, 0))[1] for k in keys)
            out.append(
                {
                    "module_id": root["id"],
                    "module_key": root["module_key"],
                    "module_name": root["module_name"],
                    "category": root["category"],
                    "description": root["description"],
                    "active_channels_count": active,
                    "total_channels": total,
                    "status": "active" if active > 0 else "inactive",
                    "sort_order": root["sort_order"],
                }
            )
        return out

    async def seed_defaults(self) -> int:
        """Insert the default catalog; existing module keys are left untouched."""
        created = 0
        async with self.db.session() as session:
            result = await session.execute(select(NotificationModule.module_key))
            existing = {str(k) for k in result.scalars().all()}

            for root_order, (key, name, description, children) in enumerate(DEFAULT_MODULES, start=1):
                parent_q = await session.execute(
                    select(NotificationModule).where(NotificationModule.module_key == key)
                )
                parent = parent_q.scalar_one_or_none()
                if parent is None:
                    parent = NotificationModule(
                        module_key=key,
                        module_name=name,
                        category=name,
                        description=description,
                        sort_order=root_order,
                        is_active=True,
                    )
                    session.add(parent)
                    await session.flush()
                    created += 1

                for child_order, (child_key, child_name, child_description) in enumerate(children, start=1):
                    if child_key in existing:
                        continue
                    session.add(
                        NotificationModule(
                            module_key=child_key,
                            module_name=child_name,
                            category=name,
                            parent_module_id=int(parent.id),
                            description=child_description,
                            sort_order=child_order,
                            is_active=True,
                        )
                    )
                    created += 1

        if created:
            logger.info(f"Seeded {created} notification modules")
        return created


def _module_dict(m: NotificationModule) -> dict:
    return {
        "id": int(m.id),
        "module_key": str(m.module_key),
        "module_name": str(m.module_name),
        "category": m.category,
        "parent_module_id": int(m.parent_module_id) if m.parent_module_id is not None else None,
        "description": m.description,
        "sort_order": int(m.sort_order or 0),
    }
