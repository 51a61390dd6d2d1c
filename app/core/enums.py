"""Status domains for orders and order items."""

from enum import Enum


class OrderStatus(str, Enum):
    NEW = "new"
    IN_PROGRESS = "in_progress"
    READY = "ready"
    PICKED_UP = "picked_up"
    CANCELLED = "cancelled"


class OrderItemStatus(str, Enum):
    NEW = "new"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    PICKED_UP = "picked_up"
    CANCELLED = "cancelled"


# Orders the kitchen still has to see.
KITCHEN_VISIBLE_STATUSES: frozenset[OrderStatus] = frozenset(
    {OrderStatus.NEW, OrderStatus.IN_PROGRESS, OrderStatus.READY}
)
