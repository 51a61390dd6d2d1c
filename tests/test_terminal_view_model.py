"""Terminal view-model: pagination, live updates and optimistic pick-up."""

import asyncio
from decimal import Decimal

import pytest

from app.core.enums import OrderItemStatus, OrderStatus
from app.schemas.order import EditOrderItemInput
from app.services.order_service import OrderItemNotFoundError
from app.viewmodels.terminal import TerminalViewModel


async def _settle():
    for _ in range(3):
        await asyncio.sleep(0)


async def test_start_loads_first_page_and_load_more_appends(source, catalog, place_order) -> None:
    """Start should load the newest page and load_more should append the rest."""
    first = await place_order((catalog.waffle_id, 1, []), customer_name="first")
    second = await place_order((catalog.waffle_id, 1, []), customer_name="second")
    third = await place_order((catalog.waffle_id, 1, []), customer_name="third")
    vm = TerminalViewModel(source, catalog.campaign_id, page_size=2)

    await vm.start()
    assert [order.id for order in vm.orders] == [third.id, second.id]
    assert vm.has_more is True

    await vm.load_more()
    assert [order.id for order in vm.orders] == [third.id, second.id, first.id]
    assert vm.has_more is False

    await vm.load_more()
    assert source.page_fetches == 2
    vm.stop()


async def test_inserted_order_is_prepended(source, feed, catalog, place_order) -> None:
    """A new order from the feed should appear at the top of the list."""
    existing = await place_order((catalog.waffle_id, 1, []))
    vm = TerminalViewModel(source, catalog.campaign_id, page_size=10)
    await vm.start()

    created = await place_order((catalog.toastie_id, 1, []), customer_name="Grace")
    await feed.drain()

    assert [order.id for order in vm.orders] == [created.id, existing.id]
    assert vm.total_count == 2
    assert len(vm.get_order(created.id).items) == 1
    vm.stop()


async def test_updates_apply_to_orders_on_later_pages(source, service, feed, catalog, place_order) -> None:
    """Feed updates should reach orders loaded by load_more, including item-only changes."""
    older = await place_order((catalog.waffle_id, 1, []), (catalog.toastie_id, 1, []), customer_name="older")
    await place_order((catalog.waffle_id, 1, []), customer_name="newer")
    vm = TerminalViewModel(source, catalog.campaign_id, page_size=1)
    await vm.start()
    await vm.load_more()

    await service.set_item_status(older.items[0].id, OrderItemStatus.IN_PROGRESS)
    await feed.drain()
    assert vm.get_order(older.id).status == OrderStatus.IN_PROGRESS

    # Order stays in progress; only the item row changes.
    await service.set_item_status(older.items[1].id, OrderItemStatus.IN_PROGRESS)
    await feed.drain()
    assert [item.status for item in vm.get_order(older.id).items] == [
        OrderItemStatus.IN_PROGRESS,
        OrderItemStatus.IN_PROGRESS,
    ]
    vm.stop()


async def test_deleted_order_is_removed(source, service, feed, catalog, place_order) -> None:
    """An order deleted in the store should disappear from the list."""
    order = await place_order((catalog.waffle_id, 1, []))
    vm = TerminalViewModel(source, catalog.campaign_id)
    await vm.start()

    await service.delete_order_item(order.items[0].id)
    await feed.drain()

    assert vm.orders == []
    assert vm.total_count == 0
    vm.stop()


async def test_pick_up_is_shown_before_the_write_completes(source, feed, catalog, place_order) -> None:
    """Pick-up should show immediately and settle once the write is confirmed."""
    order = await place_order((catalog.lemonade_id, 1, []))
    vm = TerminalViewModel(source, catalog.campaign_id)
    await vm.start()
    source.gate = asyncio.Event()

    task = asyncio.create_task(vm.mark_item_picked_up(order.items[0].id))
    await _settle()

    shown = vm.get_order(order.id)
    assert shown.items[0].status == OrderItemStatus.PICKED_UP
    assert shown.status == OrderStatus.PICKED_UP
    assert vm.confirmed_orders[0].status == OrderStatus.READY
    assert vm.pending_count == 1

    source.gate.set()
    await task
    await feed.drain()

    assert vm.pending_count == 0
    assert vm.confirmed_orders[0].status == OrderStatus.PICKED_UP
    vm.stop()


async def test_failed_write_repairs_the_affected_order(source, feed, catalog, place_order) -> None:
    """A failed write should re-fetch the order and restore its stored state."""
    order = await place_order((catalog.lemonade_id, 1, []))
    vm = TerminalViewModel(source, catalog.campaign_id)
    await vm.start()
    source.fail_writes = True

    with pytest.raises(RuntimeError):
        await vm.mark_item_picked_up(order.items[0].id)

    assert source.fetched_order_ids == [order.id]
    assert vm.pending_count == 0
    assert vm.get_order(order.id).items[0].status == OrderItemStatus.DONE
    assert vm.get_order(order.id).status == OrderStatus.READY
    vm.stop()


async def test_failed_write_on_unknown_item_reloads_first_page(source, catalog, place_order) -> None:
    """A failed write on an unlisted item should reload the first page."""
    await place_order((catalog.waffle_id, 1, []))
    vm = TerminalViewModel(source, catalog.campaign_id)
    await vm.start()
    assert source.page_fetches == 1

    with pytest.raises(OrderItemNotFoundError):
        await vm.mark_item_picked_up(9999)

    assert source.page_fetches == 2
    assert len(vm.orders) == 1
    vm.stop()


async def test_edit_item_refreshes_the_order(source, catalog, place_order) -> None:
    """Editing a line should refresh the order with the new subtotal."""
    order = await place_order((catalog.waffle_id, 1, []), (catalog.toastie_id, 1, []))
    vm = TerminalViewModel(source, catalog.campaign_id)
    await vm.start()

    edited = await vm.edit_item(order.items[0].id, quantity=2, modifier_ids=[catalog.cream_id])

    assert edited.quantity == 2
    assert vm.get_order(order.id).subtotal == Decimal("15.00")
    vm.stop()


async def test_edit_to_zero_quantity_deletes_the_line(source, catalog, place_order) -> None:
    """Editing a line to quantity zero should delete it."""
    order = await place_order((catalog.waffle_id, 1, []))
    vm = TerminalViewModel(source, catalog.campaign_id)
    await vm.start()

    assert await vm.edit_item(order.items[0].id, quantity=0) is None

    assert vm.get_order(order.id) is None
    assert vm.total_count == 0
    vm.stop()


async def test_load_more_after_an_insert_continues_after_the_last_listed_order(
    source, feed, catalog, place_order
) -> None:
    """An order inserted after the first load should not make load_more skip or repeat orders."""
    placed = [await place_order((catalog.waffle_id, 1, []), customer_name=name) for name in "ABCD"]
    vm = TerminalViewModel(source, catalog.campaign_id, page_size=2)
    await vm.start()
    assert [order.customer_name for order in vm.orders] == ["D", "C"]

    await place_order((catalog.waffle_id, 1, []), customer_name="E")
    await feed.drain()
    assert [order.customer_name for order in vm.orders] == ["E", "D", "C"]
    assert vm.has_more is True

    await vm.load_more()

    assert [order.customer_name for order in vm.orders] == ["E", "D", "C", "B", "A"]
    assert vm.total_count == 5
    assert vm.has_more is False
    assert {order.id for order in placed} < {order.id for order in vm.orders}
    vm.stop()


async def test_load_more_after_a_delete_does_not_skip_orders(source, service, feed, catalog, place_order) -> None:
    """An unlisted order deleted after the first load should not make load_more skip the next one."""
    placed = {}
    for name in "ABCD":
        placed[name] = await place_order((catalog.waffle_id, 1, []), customer_name=name)
    vm = TerminalViewModel(source, catalog.campaign_id, page_size=2)
    await vm.start()

    await service.delete_order_item(placed["B"].items[0].id)
    await feed.drain()
    assert [order.customer_name for order in vm.orders] == ["D", "C"]

    await vm.load_more()

    assert [order.customer_name for order in vm.orders] == ["D", "C", "A"]
    assert vm.total_count == 3
    assert vm.has_more is False
    vm.stop()


async def test_snapshot_read_before_the_write_commits_keeps_the_pick_up_shown(
    source, service, feed, catalog, place_order
) -> None:
    """A delivery that still shows the old status should not confirm an in-flight pick-up."""
    order = await place_order((catalog.lemonade_id, 1, []), (catalog.waffle_id, 1, []))
    lemonade = next(item for item in order.items if item.item_id == catalog.lemonade_id)
    waffle = next(item for item in order.items if item.item_id == catalog.waffle_id)
    vm = TerminalViewModel(source, catalog.campaign_id)
    await vm.start()
    source.gate = asyncio.Event()

    task = asyncio.create_task(vm.mark_item_picked_up(lemonade.id))
    await _settle()

    # A sibling edit is delivered while the pick-up is still held.
    await service.edit_order_item(waffle.id, EditOrderItemInput(quantity=2))
    await feed.drain()
    confirmed = next(item for item in vm.confirmed_orders[0].items if item.id == lemonade.id)
    assert confirmed.status == OrderItemStatus.DONE
    assert vm.pending_count == 1

    source.drop_feed = True
    source.gate.set()
    await task
    await feed.drain()

    shown = next(item for item in vm.get_order(order.id).items if item.id == lemonade.id)
    assert shown.status == OrderItemStatus.PICKED_UP
    assert vm.pending_count == 1

    source.drop_feed = False
    await vm.refresh()

    assert vm.pending_count == 0
    stored = next(item for item in vm.confirmed_orders[0].items if item.id == lemonade.id)
    assert stored.status == OrderItemStatus.PICKED_UP
    vm.stop()
