"""Module catalog: hierarchy validation, tree listing, overview counts, seeding."""
import pytest

from notifier.errors import ModuleHierarchyError
from notifier.services.module_registry import DEFAULT_MODULES


async def test_child_inherits_parent_category(registry, order_modules):
    child = await registry.get_by_key("order_completed")

    assert child.parent_module_id == order_modules["order"]
    assert child.category == "Order"


async def test_duplicate_key_is_rejected(registry, order_modules):
    with pytest.raises(ValueError, match="already exists"):
        await registry.create_module(module_key="order", module_name="Again")


async def test_unknown_parent_is_rejected(registry):
    with pytest.raises(ModuleHierarchyError):
        await registry.create_module(module_key="orphan", module_name="Orphan", parent_module_id=999)


async def test_blank_key_is_rejected(registry):
    with pytest.raises(ValueError):
        await registry.create_module(module_key="  ", module_name="Nothing")


async def test_reparenting_into_own_subtree_is_a_cycle(registry, order_modules):
    with pytest.raises(ModuleHierarchyError, match="cycle"):
        await registry.set_parent(order_modules["order"], order_modules["order_completed"])

    with pytest.raises(ModuleHierarchyError, match="cycle"):
        await registry.set_parent(order_modules["order"], order_modules["order"])


async def test_set_parent_moves_module(registry, order_modules):
    user = await registry.create_module(module_key="user", module_name="User")

    moved = await registry.set_parent(order_modules["order_details"], user.id)

    assert moved.parent_module_id == user.id
    tree = await registry.list_tree()
    user_node = next(n for n in tree if n["module_key"] == "user")
    assert [c["module_key"] for c in user_node["children"]] == ["order_details"]


async def test_tree_is_sorted_and_hides_inactive(registry, order_modules):
    await registry.create_module(
        module_key="order_failed", module_name="Failed Order", parent_module_id=order_modules["order"], sort_order=3,
        is_active=False,
    )
    await registry.create_module(module_key="payment", module_name="Payment", sort_order=2)

    tree = await registry.list_tree()

    assert [n["module_key"] for n in tree] == ["order", "payment"]
    assert [c["module_key"] for c in tree[0]["children"]] == ["order_completed", "order_details"]


async def test_overview_counts_channels_of_children(registry, channels, order_modules):
    await channels.create(module_key="order_completed", endpoint_token="1:a", target_chat_id="1")
    config = await channels.create(module_key="order_details", endpoint_token="2:b", target_chat_id="2")
    await channels.set_active(config.id, False)
    await registry.create_module(module_key="payment", module_name="Payment", sort_order=2)

    overview = {row["module_key"]: row for row in await registry.overview()}

    assert overview["order"]["total_channels"] == 2
    assert overview["order"]["active_channels_count"] == 1
    assert overview["order"]["status"] == "active"
    assert overview["payment"]["total_channels"] == 0
    assert overview["payment"]["status"] == "inactive"


async def test_seed_defaults_is_idempotent(registry):
    expected = sum(1 + len(children) for *_, children in DEFAULT_MODULES)

    assert await registry.seed_defaults() == expected
    assert await registry.seed_defaults() == 0

    tree = await registry.list_tree()
    assert [n["module_key"] for n in tree] == ["order", "user", "payment", "inventory"]
    new_signup = await registry.get_by_key("new_user_signup")
    assert new_signup.category == "User"
