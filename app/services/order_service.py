"""Order domain operations on top of the persistent store.

``OrderService`` is the repository injected into the HTTP layer and the
view-models. Every method opens its own short-lived session; row changes are
picked up by the change feed when those sessions commit.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from app.core.config import settings
from app.core.enums import KITCHEN_VISIBLE_STATUSES, OrderItemStatus, OrderStatus
from app.models.menu import CatalogItem, Modifier
from app.models.order import Order, OrderItem, OrderItemModifier
from app.schemas.order import (
    EditOrderItemInput,
    OrderItemModifierSnapshot,
    OrderItemSnapshot,
    OrderLineInput,
    OrderSnapshot,
    OrdersPage,
    PlaceOrderInput,
)
from app.services import order_status
from app.services.change_feed import ChangeFeed, ChangeType, OrderListener
from app.services.status_log import Transition, record_transition, record_transitions

logger = logging.getLogger(__name__)

StatusFilter = OrderStatus | str | Sequence[OrderStatus | str] | None
OrderCursor = tuple[datetime, int]
ReadyListener = Callable[[OrderSnapshot], Awaitable[None] | None]


class OrderValidationError(ValueError):
    """Raised when an order request is rejected before any write."""


class OrderNotFoundError(LookupError):
    """Raised when an order id does not exist."""


class OrderItemNotFoundError(LookupError):
    """Raised when an order item id does not exist."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _status_values(status_filter: StatusFilter) -> list[str] | None:
    if status_filter is None:
        return None
    if isinstance(status_filter, (OrderStatus, str)):
        return [OrderStatus(status_filter).value]
    return [OrderStatus(status).value for status in status_filter]


def _item_options() -> tuple:
    return (selectinload(OrderItem.modifiers), selectinload(OrderItem.item))


def _order_options() -> tuple:
    return (
        selectinload(Order.items).selectinload(OrderItem.modifiers),
        selectinload(Order.items).selectinload(OrderItem.item),
    )


def serialize_order_item(item: OrderItem) -> OrderItemSnapshot:
    catalog_item: CatalogItem | None = item.item
    return OrderItemSnapshot(
        id=item.id,
        order_id=item.order_id,
        item_id=item.item_id,
        name=catalog_item.name if catalog_item is not None else "Removed item",
        category_id=catalog_item.category_id if catalog_item is not None else None,
        quantity=item.quantity,
        base_price=item.base_price,
        status=item.status,
        notes=item.notes,
        created_at=item.created_at,
        updated_at=item.updated_at,
        modifiers=[OrderItemModifierSnapshot.model_validate(modifier) for modifier in item.modifiers],
    )


def serialize_order(order: Order) -> OrderSnapshot:
    return OrderSnapshot(
        id=order.id,
        campaign_id=order.campaign_id,
        customer_name=order.customer_name,
        status=order.status,
        subtotal=order.subtotal,
        notes=order.notes,
        created_at=order.created_at,
        updated_at=order.updated_at,
        items=[serialize_order_item(item) for item in order.items],
    )


def compute_line_total(base_price: Decimal, modifier_deltas: Iterable[Decimal], quantity: int) -> Decimal:
    """Return (base price + modifier deltas) x quantity."""
    return (Decimal(base_price) + sum((Decimal(delta) for delta in modifier_deltas), Decimal("0"))) * quantity


async def recalculate_order_subtotal(db: AsyncSession, order_id: int) -> Decimal | None:
    """Recompute and stage the order subtotal from its stored lines and modifier snapshots."""
    items: list[OrderItem] = list(
        (
            await db.scalars(
                select(OrderItem).options(selectinload(OrderItem.modifiers)).where(OrderItem.order_id == order_id)
            )
        ).all()
    )
    subtotal: Decimal = sum(
        (
            compute_line_total(item.base_price, (modifier.price_delta for modifier in item.modifiers), item.quantity)
            for item in items
        ),
        Decimal("0.00"),
    )
    order: Order | None = await db.get(Order, order_id)
    if order is None:
        return None
    if order.subtotal is None or Decimal(order.subtotal) != subtotal:
        order.subtotal = subtotal
        order.updated_at = _utcnow()
        await db.flush()
    return subtotal


class OrderService:
    """Order reads, placement, edits and item status transitions."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        feed: ChangeFeed | None = None,
        *,
        enforce_transitions: bool | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._feed = feed
        self._enforce_transitions = (
            settings.enforce_item_transitions if enforce_transitions is None else enforce_transitions
        )
        if feed is not None:
            feed.bind_loader(self.fetch_order_aggregate)

    # ------------------------------------------------------------------ reads

    async def fetch_order_aggregate(self, order_id: int) -> OrderSnapshot | None:
        """Return the order with items (creation order) and modifier snapshots."""
        async with self._session_factory() as db:
            order: Order | None = (
                await db.scalars(select(Order).options(*_order_options()).where(Order.id == order_id))
            ).first()
            return serialize_order(order) if order is not None else None

    async def fetch_order_item(self, item_id: int) -> OrderItemSnapshot | None:
        async with self._session_factory() as db:
            item: OrderItem | None = (
                await db.scalars(select(OrderItem).options(*_item_options()).where(OrderItem.id == item_id))
            ).first()
            return serialize_order_item(item) if item is not None else None

    async def fetch_orders_page(
        self,
        campaign_id: int,
        page: int = 1,
        page_size: int | None = None,
        status_filter: StatusFilter = None,
        before: OrderCursor | None = None,
    ) -> OrdersPage:
        """Return one most-recent-first page of campaign orders.

        With ``before`` the page starts right after that ``(created_at, id)``
        position instead of at ``page``, so rows inserted or deleted above it
        do not shift the window. ``total_count`` always counts every matching
        order of the campaign.
        """
        page = max(page, 1)
        page_size = page_size or settings.recent_orders_page_size
        filters = [Order.campaign_id == campaign_id]
        statuses: list[str] | None = _status_values(status_filter)
        if statuses is not None:
            filters.append(Order.status.in_(statuses))
        window = list(filters)
        offset: int = 0
        if before is not None:
            created_at, order_id = before
            window.append(
                or_(
                    Order.created_at < created_at,
                    and_(Order.created_at == created_at, Order.id < order_id),
                )
            )
        else:
            offset = (page - 1) * page_size

        async with self._session_factory() as db:
            total_count: int = int(await db.scalar(select(func.count()).select_from(Order).where(*filters)) or 0)
            window_count: int = (
                total_count
                if before is None
                else int(await db.scalar(select(func.count()).select_from(Order).where(*window)) or 0)
            )
            orders: list[Order] = list(
                (
                    await db.scalars(
                        select(Order)
                        .options(*_order_options())
                        .where(*window)
                        .order_by(Order.created_at.desc(), Order.id.desc())
                        .offset(offset)
                        .limit(page_size)
                    )
                ).all()
            )
            return OrdersPage(
                orders=[serialize_order(order) for order in orders],
                has_more=offset + page_size < window_count,
                total_count=total_count,
            )

    async def fetch_orders(self, campaign_id: int | None = None, status_filter: StatusFilter = None) -> list[OrderSnapshot]:
        """Return all matching orders, most recent first."""
        stmt = select(Order).options(*_order_options()).order_by(Order.created_at.desc(), Order.id.desc())
        if campaign_id is not None:
            stmt = stmt.where(Order.campaign_id == campaign_id)
        statuses: list[str] | None = _status_values(status_filter)
        if statuses is not None:
            stmt = stmt.where(Order.status.in_(statuses))
        async with self._session_factory() as db:
            return [serialize_order(order) for order in (await db.scalars(stmt)).all()]

    async def fetch_ready_orders(self, campaign_id: int | None = None) -> list[OrderSnapshot]:
        return await self.fetch_orders(campaign_id, OrderStatus.READY)

    async def fetch_active_orders(self, campaign_id: int) -> list[OrderSnapshot]:
        """Return kitchen-visible orders of a campaign, oldest first."""
        async with self._session_factory() as db:
            orders = (
                await db.scalars(
                    select(Order)
                    .options(*_order_options())
                    .where(
                        Order.campaign_id == campaign_id,
                        Order.status.in_([status.value for status in KITCHEN_VISIBLE_STATUSES]),
                    )
                    .order_by(Order.created_at.asc(), Order.id.asc())
                )
            ).all()
            return [serialize_order(order) for order in orders]

    # ---------------------------------------------------------- subscriptions

    def subscribe(self, campaign_id: int, listener: OrderListener):
        return self._require_feed().subscribe(campaign_id, listener)

    def subscribe_items(self, listener: OrderListener, campaign_id: int | None = None):
        return self._require_feed().subscribe_items(listener, campaign_id)

    def subscribe_ready_orders(self, campaign_id: int, listener: ReadyListener):
        """Receive the full order whenever an order-row update leaves it ``ready``."""

        def on_change(change_type: ChangeType, snapshot: OrderSnapshot):
            if change_type == ChangeType.UPDATED and snapshot.status == OrderStatus.READY:
                return listener(snapshot)
            return None

        return self.subscribe(campaign_id, on_change)

    def _require_feed(self) -> ChangeFeed:
        if self._feed is None:
            raise RuntimeError("OrderService was created without a change feed")
        return self._feed

    # -------------------------------------------------------------- placement

    async def place_order(self, payload: PlaceOrderInput) -> OrderSnapshot:
        """Create the order row, its items and their modifier snapshots.

        The three writes are separate commits. A failure while creating items
        deletes the order row again; a failure while attaching modifiers is
        logged and the order is kept without them.
        """
        self._validate_order(payload)

        async with self._session_factory() as db:
            catalog: dict[int, CatalogItem] = await self._load_catalog_items(
                db, {line.catalog_item_id for line in payload.lines}
            )
            missing: set[int] = {line.catalog_item_id for line in payload.lines} - set(catalog)
            if missing:
                raise OrderValidationError(f"Catalog item(s) not found: {sorted(missing)}")
            modifiers: dict[int, Modifier] = await self._load_modifiers(
                db, {modifier_id for line in payload.lines for modifier_id in line.modifier_ids}
            )
            subtotal: Decimal = sum(
                (
                    compute_line_total(
                        catalog[line.catalog_item_id].base_price,
                        (modifiers[m].price_delta for m in line.modifier_ids if m in modifiers),
                        line.quantity,
                    )
                    for line in payload.lines
                ),
                Decimal("0.00"),
            )

            order_id: int = await self._create_order_row(db, payload, subtotal)
            try:
                created_items: list[tuple[int, OrderItemStatus]] = await self._create_order_items(
                    db, order_id, payload.lines, catalog
                )
            except Exception:
                await db.rollback()
                logger.exception("[ORDERS] Failed to create items for order_id=%s; removing order.", order_id)
                await self._remove_order(order_id)
                raise

            try:
                await self._create_item_modifiers(
                    db, [item_id for item_id, _ in created_items], payload.lines, modifiers
                )
            except SQLAlchemyError:
                await db.rollback()
                logger.exception(
                    "[ORDERS] Failed to attach modifiers for order_id=%s; keeping order without them.", order_id
                )

            await recalculate_order_subtotal(db, order_id)
            await order_status.recompute_order_status(db, order_id)
            await db.commit()

        await record_transitions(
            self._session_factory,
            [(item_id, None, initial_status) for item_id, initial_status in created_items],
        )
        logger.info("[ORDERS] Placed order_id=%s with %s line(s).", order_id, len(created_items))
        snapshot: OrderSnapshot | None = await self.fetch_order_aggregate(order_id)
        if snapshot is None:
            raise OrderNotFoundError(order_id)
        return snapshot

    @staticmethod
    def _validate_order(payload: PlaceOrderInput) -> None:
        if not payload.customer_name or not payload.customer_name.strip():
            raise OrderValidationError("Customer name is required")
        if not payload.lines:
            raise OrderValidationError("Cart is empty")
        for line in payload.lines:
            if line.quantity < 1:
                raise OrderValidationError("Quantity must be >= 1")

    @staticmethod
    async def _load_catalog_items(db: AsyncSession, item_ids: set[int]) -> dict[int, CatalogItem]:
        if not item_ids:
            return {}
        items = (await db.scalars(select(CatalogItem).where(CatalogItem.id.in_(item_ids)))).all()
        return {item.id: item for item in items}

    @staticmethod
    async def _load_modifiers(db: AsyncSession, modifier_ids: set[int]) -> dict[int, Modifier]:
        if not modifier_ids:
            return {}
        modifiers = (await db.scalars(select(Modifier).where(Modifier.id.in_(modifier_ids)))).all()
        return {modifier.id: modifier for modifier in modifiers}

    async def _create_order_row(self, db: AsyncSession, payload: PlaceOrderInput, subtotal: Decimal) -> int:
        order = Order(
            campaign_id=payload.campaign_id,
            customer_name=payload.customer_name.strip(),
            notes=payload.notes or None,
            subtotal=subtotal,
            status=OrderStatus.NEW.value,
        )
        db.add(order)
        await db.commit()
        return order.id

    async def _create_order_items(
        self,
        db: AsyncSession,
        order_id: int,
        lines: Sequence[OrderLineInput],
        catalog: dict[int, CatalogItem],
    ) -> list[tuple[int, OrderItemStatus]]:
        rows: list[OrderItem] = []
        for line in lines:
            catalog_item: CatalogItem = catalog[line.catalog_item_id]
            skip_prep: bool = catalog_item.no_prep_needed if line.skip_prep is None else line.skip_prep
            initial_status = OrderItemStatus.DONE if skip_prep else OrderItemStatus.NEW
            rows.append(
                OrderItem(
                    order_id=order_id,
                    item_id=catalog_item.id,
                    quantity=line.quantity,
                    base_price=catalog_item.base_price,
                    notes=line.notes or None,
                    status=initial_status.value,
                )
            )
        db.add_all(rows)
        await db.commit()
        return [(row.id, OrderItemStatus(row.status)) for row in rows]

    async def _create_item_modifiers(
        self,
        db: AsyncSession,
        order_item_ids: Sequence[int],
        lines: Sequence[OrderLineInput],
        modifiers: dict[int, Modifier],
    ) -> None:
        snapshots: list[OrderItemModifier] = []
        for order_item_id, line in zip(order_item_ids, lines):
            for modifier_id in line.modifier_ids:
                modifier: Modifier | None = modifiers.get(modifier_id)
                if modifier is None:
                    continue
                snapshots.append(
                    OrderItemModifier(
                        order_item_id=order_item_id,
                        modifier_id=modifier.id,
                        label=modifier.name,
                        price_delta=modifier.price_delta,
                    )
                )
        if not snapshots:
            return
        db.add_all(snapshots)
        await db.commit()

    async def _remove_order(self, order_id: int) -> None:
        """Best-effort compensating delete of a half-created order."""
        try:
            async with self._session_factory() as db:
                order: Order | None = await db.get(Order, order_id)
                if order is not None:
                    await db.delete(order)
                    await db.commit()
        except SQLAlchemyError:
            logger.exception("[ORDERS] Compensating delete failed for order_id=%s.", order_id)

    # ------------------------------------------------------- status mutations

    def _check_transition(self, item_id: int, current: OrderItemStatus, new: OrderItemStatus) -> None:
        if self._enforce_transitions and not order_status.can_transition_item(current, new):
            raise order_status.InvalidItemTransitionError(item_id, current, new)

    async def set_item_status(self, item_id: int, status: OrderItemStatus | str) -> OrderItemSnapshot:
        """Move one item to ``status``, log the transition and re-derive its order."""
        new_status = OrderItemStatus(status)
        async with self._session_factory() as db:
            item: OrderItem | None = await db.get(OrderItem, item_id)
            if item is None:
                raise OrderItemNotFoundError(item_id)
            old_status = OrderItemStatus(item.status)
            self._check_transition(item_id, old_status, new_status)
            order_id: int = item.order_id
            item.status = new_status.value
            item.updated_at = _utcnow()
            await db.commit()

        await record_transition(self._session_factory, item_id, old_status, new_status)
        await self.recompute_order_status(order_id)
        snapshot: OrderItemSnapshot | None = await self.fetch_order_item(item_id)
        if snapshot is None:
            raise OrderItemNotFoundError(item_id)
        return snapshot

    async def set_items_status(self, item_ids: Sequence[int], status: OrderItemStatus | str) -> list[int]:
        """Move several items at once; each affected order is re-derived once.

        Returns the ids of the affected orders.
        """
        if not item_ids:
            return []
        new_status = OrderItemStatus(status)
        async with self._session_factory() as db:
            items: list[OrderItem] = list(
                (await db.scalars(select(OrderItem).where(OrderItem.id.in_(set(item_ids))))).all()
            )
            if len(items) != len(set(item_ids)):
                logger.warning(
                    "[ORDERS] Batch status update requested %s item(s), found %s.", len(set(item_ids)), len(items)
                )
            for item in items:
                self._check_transition(item.id, OrderItemStatus(item.status), new_status)

            transitions: list[Transition] = []
            order_ids: list[int] = []
            now: datetime = _utcnow()
            for item in items:
                transitions.append((item.id, OrderItemStatus(item.status), new_status))
                if item.order_id not in order_ids:
                    order_ids.append(item.order_id)
                item.status = new_status.value
                item.updated_at = now
            await db.commit()

        await record_transitions(self._session_factory, transitions)
        for order_id in order_ids:
            await self.recompute_order_status(order_id)
        return order_ids

    async def mark_order_picked_up(self, order_id: int) -> OrderSnapshot:
        """Hand over a whole order by moving every active item to ``picked_up``.

        The order status is then derived like any other item change, so the
        transitions are logged and cancelled lines stay cancelled.
        """
        order: OrderSnapshot | None = await self.fetch_order_aggregate(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        item_ids: list[int] = [
            item.id
            for item in order.items
            if item.status not in (OrderItemStatus.CANCELLED, OrderItemStatus.PICKED_UP)
        ]
        await self.set_items_status(item_ids, OrderItemStatus.PICKED_UP)
        snapshot: OrderSnapshot | None = await self.fetch_order_aggregate(order_id)
        if snapshot is None:
            raise OrderNotFoundError(order_id)
        logger.info("[ORDERS] Order order_id=%s picked up (%s item(s) moved).", order_id, len(item_ids))
        return snapshot

    async def recompute_order_status(self, order_id: int) -> OrderStatus | None:
        """Re-derive and persist one order's status from its items."""
        async with self._session_factory() as db:
            status: OrderStatus | None = await order_status.recompute_order_status(db, order_id)
            await db.commit()
            return status

    # ------------------------------------------------------------ line edits

    async def edit_order_item(self, item_id: int, payload: EditOrderItemInput) -> OrderItemSnapshot:
        """Replace quantity, notes and the full modifier set of one line."""
        if payload.quantity < 1:
            raise OrderValidationError("Quantity must be >= 1")
        async with self._session_factory() as db:
            item: OrderItem | None = (
                await db.scalars(
                    select(OrderItem).options(selectinload(OrderItem.modifiers)).where(OrderItem.id == item_id)
                )
            ).first()
            if item is None:
                raise OrderItemNotFoundError(item_id)
            order_id: int = item.order_id
            item.quantity = payload.quantity
            item.notes = payload.notes or None
            item.updated_at = _utcnow()

            modifiers: dict[int, Modifier] = await self._load_modifiers(db, set(payload.modifier_ids))
            item.modifiers.clear()
            for modifier_id in dict.fromkeys(payload.modifier_ids):
                modifier: Modifier | None = modifiers.get(modifier_id)
                if modifier is None:
                    continue
                item.modifiers.append(
                    OrderItemModifier(modifier_id=modifier.id, label=modifier.name, price_delta=modifier.price_delta)
                )
            await db.flush()

            await recalculate_order_subtotal(db, order_id)
            await order_status.recompute_order_status(db, order_id)
            await db.commit()

        snapshot: OrderItemSnapshot | None = await self.fetch_order_item(item_id)
        if snapshot is None:
            raise OrderItemNotFoundError(item_id)
        return snapshot

    async def delete_order_item(self, item_id: int) -> bool:
        """Delete one line. Returns True when this removed the whole order."""
        async with self._session_factory() as db:
            item: OrderItem | None = await db.get(OrderItem, item_id)
            if item is None:
                raise OrderItemNotFoundError(item_id)
            order_id: int = item.order_id
            await db.delete(item)
            await db.flush()

            remaining: int = int(
                await db.scalar(select(func.count()).select_from(OrderItem).where(OrderItem.order_id == order_id))
                or 0
            )
            order_removed: bool = remaining == 0
            if order_removed:
                order: Order | None = await db.get(Order, order_id)
                if order is not None:
                    await db.delete(order)
            else:
                await recalculate_order_subtotal(db, order_id)
                await order_status.recompute_order_status(db, order_id)
            await db.commit()

        if order_removed:
            logger.info("[ORDERS] Removed order_id=%s after deleting its last item.", order_id)
        return order_removed
