"""Order schemas: placement/edit inputs and full-order snapshots."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.core.enums import OrderItemStatus, OrderStatus


class OrderLineInput(BaseModel):
    """Single cart line to be placed."""

    catalog_item_id: int
    quantity: int = Field(default=1, ge=1)
    notes: str | None = None
    modifier_ids: list[int] = Field(default_factory=list)
    # None means "use the catalog item's no_prep_needed flag".
    skip_prep: bool | None = None


class PlaceOrderInput(BaseModel):
    """Order placement payload coming from the cart."""

    campaign_id: int | None
    customer_name: str
    notes: str | None = None
    lines: list[OrderLineInput] = Field(min_length=1)

    @field_validator("customer_name")
    @classmethod
    def _customer_name_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Customer name is required")
        return value


class EditOrderItemInput(BaseModel):
    """Full replacement of an order line's editable fields."""

    quantity: int = Field(ge=1)
    notes: str | None = None
    modifier_ids: list[int] = Field(default_factory=list)


class ItemStatusUpdate(BaseModel):
    status: OrderItemStatus


class ItemsStatusUpdate(BaseModel):
    item_ids: list[int]
    status: OrderItemStatus


class OrderItemModifierSnapshot(BaseModel):
    """Modifier as it was when attached to the line."""

    id: int
    modifier_id: int | None
    label: str
    price_delta: Decimal

    model_config = ConfigDict(from_attributes=True)


class OrderItemSnapshot(BaseModel):
    """Order line with catalog details and modifier snapshots."""

    id: int
    order_id: int
    item_id: int | None
    name: str
    category_id: int | None = None
    quantity: int
    base_price: Decimal
    status: OrderItemStatus
    notes: str | None = None
    created_at: datetime
    updated_at: datetime
    modifiers: list[OrderItemModifierSnapshot] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)

    @property
    def line_total(self) -> Decimal:
        unit = self.base_price + sum((m.price_delta for m in self.modifiers), Decimal("0"))
        return unit * self.quantity


class OrderSnapshot(BaseModel):
    """Complete order aggregate, the unit delivered by the change feed."""

    id: int
    campaign_id: int | None
    customer_name: str
    status: OrderStatus
    subtotal: Decimal
    notes: str | None = None
    created_at: datetime
    updated_at: datetime
    items: list[OrderItemSnapshot] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class OrdersPage(BaseModel):
    """One page of most-recent-first orders."""

    orders: list[OrderSnapshot]
    has_more: bool
    total_count: int
