"""Order status derivation, monotonicity guards and item transitions."""

import itertools

import pytest

from app.core.enums import OrderItemStatus, OrderStatus
from app.services.order_status import (
    ALLOWED_ITEM_TRANSITIONS,
    can_transition_item,
    derive_order_status,
    resolve_order_status,
)

NEW = OrderItemStatus.NEW
IN_PROGRESS = OrderItemStatus.IN_PROGRESS
DONE = OrderItemStatus.DONE
PICKED_UP = OrderItemStatus.PICKED_UP
CANCELLED = OrderItemStatus.CANCELLED


@pytest.mark.parametrize(
    ("item_statuses", "expected"),
    [
        ([NEW], OrderStatus.NEW),
        ([NEW, NEW], OrderStatus.NEW),
        ([NEW, IN_PROGRESS], OrderStatus.IN_PROGRESS),
        ([NEW, DONE], OrderStatus.IN_PROGRESS),
        ([NEW, PICKED_UP], OrderStatus.IN_PROGRESS),
        ([IN_PROGRESS, DONE], OrderStatus.IN_PROGRESS),
        ([DONE], OrderStatus.READY),
        ([DONE, PICKED_UP], OrderStatus.READY),
        ([PICKED_UP, PICKED_UP], OrderStatus.PICKED_UP),
        ([CANCELLED], OrderStatus.CANCELLED),
        ([CANCELLED, CANCELLED], OrderStatus.CANCELLED),
        ([CANCELLED, DONE], OrderStatus.READY),
        ([CANCELLED, PICKED_UP], OrderStatus.PICKED_UP),
        ([CANCELLED, NEW], OrderStatus.NEW),
    ],
)
def test_derive_order_status(item_statuses, expected) -> None:
    """Item status sets should classify into the expected order status."""
    assert derive_order_status(item_statuses) == expected


def test_derive_order_status_without_items_is_undefined() -> None:
    """An order without items should have no derived status."""
    assert derive_order_status([]) is None


def test_derive_order_status_accepts_raw_values() -> None:
    """Raw status strings should classify like enum members."""
    assert derive_order_status(["done", "picked_up"]) == OrderStatus.READY


def test_derive_order_status_ignores_item_order() -> None:
    """Item order should not change the derived status."""
    for statuses in itertools.combinations_with_replacement(list(OrderItemStatus), 3):
        results = {derive_order_status(permutation) for permutation in itertools.permutations(statuses)}
        assert len(results) == 1, statuses


def test_cancelled_items_do_not_affect_active_classification() -> None:
    """Cancelled items should be ignored next to active ones."""
    for size in range(1, 4):
        for statuses in itertools.combinations_with_replacement(
            [NEW, IN_PROGRESS, DONE, PICKED_UP], size
        ):
            assert derive_order_status([*statuses, CANCELLED]) == derive_order_status(statuses)


def test_derive_order_status_is_total_over_non_empty_inputs() -> None:
    """Every non-empty status combination should derive a status."""
    for size in range(1, 4):
        for statuses in itertools.combinations_with_replacement(list(OrderItemStatus), size):
            assert derive_order_status(statuses) in set(OrderStatus)


@pytest.mark.parametrize("derived", list(OrderStatus))
def test_cancelled_order_stays_cancelled(derived) -> None:
    """A cancelled order should ignore any derived status."""
    assert resolve_order_status(OrderStatus.CANCELLED, derived) == OrderStatus.CANCELLED


@pytest.mark.parametrize("derived", [OrderStatus.NEW, OrderStatus.IN_PROGRESS, OrderStatus.READY])
def test_picked_up_order_is_not_reopened(derived) -> None:
    """A picked-up order should ignore a derivation that is not picked up."""
    assert resolve_order_status(OrderStatus.PICKED_UP, derived) == OrderStatus.PICKED_UP


def test_picked_up_order_accepts_picked_up() -> None:
    """A picked-up order should accept a picked-up derivation."""
    assert resolve_order_status("picked_up", OrderStatus.PICKED_UP) == OrderStatus.PICKED_UP


@pytest.mark.parametrize("current", [OrderStatus.NEW, OrderStatus.IN_PROGRESS, OrderStatus.READY])
@pytest.mark.parametrize("derived", list(OrderStatus))
def test_open_orders_take_the_derived_status(current, derived) -> None:
    """Open orders should take the derived status as is."""
    assert resolve_order_status(current, derived) == derived


def test_item_transitions() -> None:
    """Allowed item transitions should follow the transition table."""
    assert can_transition_item(NEW, IN_PROGRESS)
    assert can_transition_item(IN_PROGRESS, DONE)
    assert can_transition_item(DONE, PICKED_UP)
    assert can_transition_item(NEW, DONE)
    assert not can_transition_item(NEW, PICKED_UP)
    assert not can_transition_item(PICKED_UP, NEW)
    assert not can_transition_item(CANCELLED, IN_PROGRESS)


def test_same_status_write_is_always_allowed() -> None:
    """Writing the current status should always be allowed."""
    for status in OrderItemStatus:
        assert can_transition_item(status, status)


def test_terminal_item_statuses_have_no_exits() -> None:
    """Picked-up and cancelled items should not move anywhere else."""
    assert ALLOWED_ITEM_TRANSITIONS[PICKED_UP] == set()
    assert ALLOWED_ITEM_TRANSITIONS[CANCELLED] == set()
