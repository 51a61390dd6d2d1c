"""Order status aggregation and item transition helpers.

An order's status is never set directly by staff: it is derived from the
statuses of its line items every time an item changes. The derivation is a
pure function of the item-status multiset; persisting it is guarded so that a
stale recomputation cannot reopen a finished order.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import OrderItemStatus, OrderStatus
from app.models.order import Order, OrderItem

logger = logging.getLogger(__name__)

ALLOWED_ITEM_TRANSITIONS: dict[OrderItemStatus, set[OrderItemStatus]] = {
    OrderItemStatus.NEW: {OrderItemStatus.IN_PROGRESS, OrderItemStatus.DONE, OrderItemStatus.CANCELLED},
    OrderItemStatus.IN_PROGRESS: {OrderItemStatus.NEW, OrderItemStatus.DONE, OrderItemStatus.CANCELLED},
    OrderItemStatus.DONE: {OrderItemStatus.IN_PROGRESS, OrderItemStatus.PICKED_UP, OrderItemStatus.CANCELLED},
    OrderItemStatus.PICKED_UP: set(),
    OrderItemStatus.CANCELLED: set(),
}


class InvalidItemTransitionError(ValueError):
    """Raised when transition enforcement is on and a move is not allowed."""

    def __init__(self, item_id: int, current: OrderItemStatus, new: OrderItemStatus) -> None:
        super().__init__(f"Order item {item_id} cannot move from {current.value} to {new.value}")
        self.item_id = item_id
        self.current = current
        self.new = new


def can_transition_item(current: OrderItemStatus, new: OrderItemStatus) -> bool:
    """Return whether an item can move from current to new status."""
    return current == new or new in ALLOWED_ITEM_TRANSITIONS.get(current, set())


def derive_order_status(item_statuses: Iterable[OrderItemStatus | str]) -> OrderStatus | None:
    """Classify an order from its item statuses.

    Returns ``None`` for an order without items. Input ordering does not
    matter; only set membership over the active (non-cancelled) items does.
    """
    statuses: list[OrderItemStatus] = [OrderItemStatus(status) for status in item_statuses]
    if not statuses:
        return None

    active: set[OrderItemStatus] = {status for status in statuses if status != OrderItemStatus.CANCELLED}
    if not active:
        return OrderStatus.CANCELLED

    if active == {OrderItemStatus.PICKED_UP}:
        return OrderStatus.PICKED_UP
    if active <= {OrderItemStatus.DONE, OrderItemStatus.PICKED_UP}:
        return OrderStatus.READY
    if active & {OrderItemStatus.IN_PROGRESS, OrderItemStatus.DONE, OrderItemStatus.PICKED_UP}:
        return OrderStatus.IN_PROGRESS
    return OrderStatus.NEW


def resolve_order_status(current: OrderStatus | str, derived: OrderStatus) -> OrderStatus:
    """Apply the monotonicity guards to a freshly derived status.

    A cancelled order stays cancelled, and a picked-up order only accepts a
    derivation that is still picked up.
    """
    current = OrderStatus(current)
    if current == OrderStatus.CANCELLED:
        return current
    if current == OrderStatus.PICKED_UP and derived != OrderStatus.PICKED_UP:
        return current
    return derived


async def recompute_order_status(db: AsyncSession, order_id: int) -> OrderStatus | None:
    """Recompute and stage the order status from its items.

    The caller owns the transaction. The order row is only touched when the
    guarded status differs from the stored one, so unchanged orders produce no
    change-feed traffic. Returns the resulting status, or ``None`` when the
    order has no items or does not exist.
    """
    item_statuses: list[str] = list(
        (await db.scalars(select(OrderItem.status).where(OrderItem.order_id == order_id))).all()
    )
    derived: OrderStatus | None = derive_order_status(item_statuses)
    if derived is None:
        return None

    order: Order | None = await db.get(Order, order_id)
    if order is None:
        return None

    resolved: OrderStatus = resolve_order_status(order.status, derived)
    if resolved != derived:
        logger.info(
            "[ORDERS] Ignoring derived status %s for order_id=%s held at %s",
            derived.value,
            order_id,
            order.status,
        )
    if resolved.value != order.status:
        order.status = resolved.value
        order.updated_at = datetime.now(timezone.utc)
        await db.flush()
    return resolved
