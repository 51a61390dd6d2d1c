"""In-process change feed for orders and order items.

Row changes are captured from the ORM session (``after_flush``) and released
to the feed only when the transaction commits. For every affected order the
feed re-fetches the full aggregate and hands subscribers the complete
snapshot, never a field-level diff. Subscribers must tolerate re-delivery of
the same snapshot; there is no ordering guarantee across orders.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from sqlalchemy import event
from sqlalchemy.orm import Session

from app.models.order import Order, OrderItem
from app.schemas.order import OrderSnapshot

logger = logging.getLogger(__name__)

PENDING_CHANGES_KEY = "pending_row_changes"
FEED_KEY = "change_feed"


class ChangeType(str, Enum):
    INSERTED = "INSERT"
    UPDATED = "UPDATE"
    DELETED = "DELETE"


@dataclass(frozen=True)
class RowChange:
    """Low-level change of one ``orders`` or ``order_items`` row."""

    table: str
    change_type: ChangeType
    order_id: int
    campaign_id: int | None = None
    old_row: OrderSnapshot | None = None


OrderListener = Callable[[ChangeType, OrderSnapshot], Awaitable[None] | None]
OrderLoader = Callable[[int], Awaitable[OrderSnapshot | None]]


@dataclass(eq=False)
class _Subscription:
    listener: OrderListener
    campaign_id: int | None
    include_items: bool


@dataclass
class _OrderDelta:
    order_change: ChangeType | None = None
    old_row: OrderSnapshot | None = None
    composition_changed: bool = False
    items_updated: bool = False


@dataclass
class ChangeFeed:
    """Fan-out of committed order changes to campaign-scoped subscribers."""

    loader: OrderLoader | None = None
    _subscriptions: list[_Subscription] = field(default_factory=list)
    _tasks: set[asyncio.Task] = field(default_factory=set)
    _lock: asyncio.Lock | None = None

    def bind_loader(self, loader: OrderLoader) -> None:
        self.loader = loader

    def subscribe(self, campaign_id: int, listener: OrderListener) -> Callable[[], None]:
        """Receive order-row changes for one campaign. Returns the unsubscribe handle."""
        return self._add(_Subscription(listener=listener, campaign_id=campaign_id, include_items=False))

    def subscribe_items(self, listener: OrderListener, campaign_id: int | None = None) -> Callable[[], None]:
        """Also receive orders whose items changed without touching the order row."""
        return self._add(_Subscription(listener=listener, campaign_id=campaign_id, include_items=True))

    def _add(self, subscription: _Subscription) -> Callable[[], None]:
        self._subscriptions.append(subscription)

        def unsubscribe() -> None:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def publish(self, changes: list[RowChange]) -> None:
        """Schedule delivery of one committed batch of row changes."""
        if not changes:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("[FEED] No running event loop; dropping %s row change(s).", len(changes))
            return
        task = loop.create_task(self._dispatch(changes))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait until every scheduled delivery has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _dispatch(self, changes: list[RowChange]) -> None:
        if self._lock is None:
            self._lock = asyncio.Lock()
        # Batches are delivered in commit order.
        async with self._lock:
            for order_id, delta in _coalesce(changes).items():
                await self._deliver(order_id, delta)

    async def _deliver(self, order_id: int, delta: _OrderDelta) -> None:
        if delta.order_change == ChangeType.DELETED:
            snapshot: OrderSnapshot | None = delta.old_row
            change_type = ChangeType.DELETED
        else:
            if self.loader is None:
                logger.warning("[FEED] No order loader bound; skipping order_id=%s.", order_id)
                return
            try:
                snapshot = await self.loader(order_id)
            except Exception:
                logger.exception("[FEED] Failed to load order_id=%s for delivery.", order_id)
                return
            change_type = delta.order_change or ChangeType.UPDATED
        if snapshot is None:
            # Deleted after this change was committed; its delete batch follows.
            return

        order_row_touched = delta.order_change is not None or delta.composition_changed
        for subscription in list(self._subscriptions):
            if subscription.campaign_id is not None and subscription.campaign_id != snapshot.campaign_id:
                continue
            if not order_row_touched and not (delta.items_updated and subscription.include_items):
                continue
            try:
                result = subscription.listener(change_type, snapshot)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("[FEED] Subscriber failed on %s for order_id=%s.", change_type.value, order_id)


def _coalesce(changes: list[RowChange]) -> dict[int, _OrderDelta]:
    deltas: dict[int, _OrderDelta] = {}
    for change in changes:
        delta = deltas.setdefault(change.order_id, _OrderDelta())
        if change.table == Order.__tablename__:
            if change.change_type == ChangeType.DELETED or delta.order_change is None:
                delta.order_change = change.change_type
            elif change.change_type == ChangeType.INSERTED:
                delta.order_change = ChangeType.INSERTED
            delta.old_row = change.old_row or delta.old_row
        elif change.change_type == ChangeType.UPDATED:
            delta.items_updated = True
        else:
            delta.composition_changed = True
    return deltas


def _order_row_snapshot(order: Order) -> OrderSnapshot:
    return OrderSnapshot(
        id=order.id,
        campaign_id=order.campaign_id,
        customer_name=order.customer_name,
        status=order.status,
        subtotal=order.subtotal,
        notes=order.notes,
        created_at=order.created_at,
        updated_at=order.updated_at,
        items=[],
    )


@event.listens_for(Session, "after_flush")
def _capture_row_changes(session: Session, flush_context: Any) -> None:
    if session.info.get(FEED_KEY) is None:
        return
    pending: list[RowChange] = session.info.setdefault(PENDING_CHANGES_KEY, [])

    for obj in session.new:
        if isinstance(obj, Order):
            pending.append(RowChange(Order.__tablename__, ChangeType.INSERTED, obj.id, obj.campaign_id))
        elif isinstance(obj, OrderItem):
            pending.append(RowChange(OrderItem.__tablename__, ChangeType.INSERTED, obj.order_id))

    for obj in session.dirty:
        if not session.is_modified(obj, include_collections=False):
            continue
        if isinstance(obj, Order):
            pending.append(RowChange(Order.__tablename__, ChangeType.UPDATED, obj.id, obj.campaign_id))
        elif isinstance(obj, OrderItem):
            pending.append(RowChange(OrderItem.__tablename__, ChangeType.UPDATED, obj.order_id))

    for obj in session.deleted:
        if isinstance(obj, Order):
            pending.append(
                RowChange(
                    Order.__tablename__,
                    ChangeType.DELETED,
                    obj.id,
                    obj.campaign_id,
                    old_row=_order_row_snapshot(obj),
                )
            )
        elif isinstance(obj, OrderItem):
            pending.append(RowChange(OrderItem.__tablename__, ChangeType.DELETED, obj.order_id))


@event.listens_for(Session, "after_commit")
def _publish_committed_changes(session: Session) -> None:
    changes: list[RowChange] = session.info.pop(PENDING_CHANGES_KEY, [])
    feed: ChangeFeed | None = session.info.get(FEED_KEY)
    if feed is not None and changes:
        feed.publish(changes)


@event.listens_for(Session, "after_soft_rollback")
def _discard_rolled_back_changes(session: Session, previous_transaction: Any) -> None:
    session.info.pop(PENDING_CHANGES_KEY, None)
