"""Application models package."""

from app.models.campaign import Campaign
from app.models.menu import CatalogItem, Category, ItemModifier, Modifier
from app.models.order import Order, OrderItem, OrderItemModifier
from app.models.status_event import OrderItemStatusEvent

__all__ = [
    "Campaign", "Category", "CatalogItem", "Modifier", "ItemModifier",
    "Order", "OrderItem", "OrderItemModifier", "OrderItemStatusEvent",
]
