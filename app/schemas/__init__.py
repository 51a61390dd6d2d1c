"""Pydantic schemas package."""

from app.schemas.order import (
    EditOrderItemInput,
    ItemStatusUpdate,
    ItemsStatusUpdate,
    OrderItemModifierSnapshot,
    OrderItemSnapshot,
    OrderLineInput,
    OrderSnapshot,
    OrdersPage,
    PlaceOrderInput,
)

__all__ = [
    "EditOrderItemInput",
    "ItemStatusUpdate",
    "ItemsStatusUpdate",
    "OrderItemModifierSnapshot",
    "OrderItemSnapshot",
    "OrderLineInput",
    "OrderSnapshot",
    "OrdersPage",
    "PlaceOrderInput",
]
