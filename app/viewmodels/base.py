"""Shared client-side order cache for the terminal and kitchen view-models.

The cache keeps two layers: ``confirmed`` snapshots that came from the store
(a fetch or a change-feed delivery) and a ``pending`` overlay of local item
status changes whose writes are in flight. Display state is the merge of both.
An overlay entry is dropped when its write fails, when a confirmed snapshot
already shows its statuses, or, once its write has succeeded, when the next
confirmed snapshot of its order arrives.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol

from app.core.enums import OrderItemStatus, OrderStatus
from app.schemas.order import EditOrderItemInput, OrderItemSnapshot, OrderSnapshot, OrdersPage
from app.services.change_feed import ChangeType, OrderListener
from app.services.order_status import derive_order_status, resolve_order_status

logger = logging.getLogger(__name__)


class OrderSource(Protocol):
    """Store operations the view-models depend on."""

    async def fetch_order_aggregate(self, order_id: int) -> OrderSnapshot | None: ...

    async def fetch_orders_page(
        self,
        campaign_id: int,
        page: int = 1,
        page_size: int | None = None,
        status_filter=None,
        before: tuple[datetime, int] | None = None,
    ) -> OrdersPage: ...

    async def fetch_active_orders(self, campaign_id: int) -> list[OrderSnapshot]: ...

    async def set_item_status(self, item_id: int, status: OrderItemStatus) -> OrderItemSnapshot: ...

    async def set_items_status(self, item_ids: Sequence[int], status: OrderItemStatus) -> list[int]: ...

    async def edit_order_item(self, item_id: int, payload: EditOrderItemInput) -> OrderItemSnapshot: ...

    async def delete_order_item(self, item_id: int) -> bool: ...

    def subscribe(self, campaign_id: int, listener: OrderListener) -> Callable[[], None]: ...

    def subscribe_items(self, listener: OrderListener, campaign_id: int | None = None) -> Callable[[], None]: ...


@dataclass
class PendingMutation:
    order_id: int
    item_statuses: dict[int, OrderItemStatus]
    # The write returned; the next confirmed snapshot of the order replaces the overlay.
    settled: bool = False

    def reflected_in(self, snapshot: OrderSnapshot) -> bool:
        """Whether ``snapshot`` already shows every status this mutation writes."""
        current: dict[int, OrderItemStatus] = {item.id: item.status for item in snapshot.items}
        return all(current.get(item_id) == status for item_id, status in self.item_statuses.items())


def created_sort_key(order: OrderSnapshot) -> tuple[datetime, int]:
    created_at: datetime = order.created_at
    if created_at.tzinfo is not None:
        created_at = created_at.astimezone(timezone.utc).replace(tzinfo=None)
    return created_at, order.id


def apply_item_statuses(order: OrderSnapshot, item_statuses: dict[int, OrderItemStatus]) -> OrderSnapshot:
    """Patch item statuses and re-derive the order status the way the store would."""
    if not any(item.id in item_statuses for item in order.items):
        return order
    items: list[OrderItemSnapshot] = [
        item.model_copy(update={"status": item_statuses[item.id]}) if item.id in item_statuses else item
        for item in order.items
    ]
    derived: OrderStatus | None = derive_order_status(item.status for item in items)
    status: OrderStatus = order.status if derived is None else resolve_order_status(order.status, derived)
    return order.model_copy(update={"items": items, "status": status})


class OrderListViewModel:
    """Ordered list of confirmed orders plus the pending overlay."""

    log_tag = "ORDERS"

    def __init__(self, source: OrderSource, campaign_id: int) -> None:
        self.source = source
        self.campaign_id = campaign_id
        self._confirmed: list[OrderSnapshot] = []
        self._pending: dict[int, PendingMutation] = {}
        self._next_token = 0
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def orders(self) -> list[OrderSnapshot]:
        """Display state: confirmed snapshots with in-flight changes applied."""
        if not self._pending:
            return list(self._confirmed)
        overlays: dict[int, dict[int, OrderItemStatus]] = {}
        for token in sorted(self._pending):
            mutation = self._pending[token]
            overlays.setdefault(mutation.order_id, {}).update(mutation.item_statuses)
        return [
            apply_item_statuses(order, overlays[order.id]) if order.id in overlays else order
            for order in self._confirmed
        ]

    @property
    def confirmed_orders(self) -> list[OrderSnapshot]:
        return list(self._confirmed)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def get_order(self, order_id: int) -> OrderSnapshot | None:
        return next((order for order in self.orders if order.id == order_id), None)

    def order_id_for_item(self, item_id: int) -> int | None:
        for order in self._confirmed:
            if any(item.id == item_id for item in order.items):
                return order.id
        return None

    # -------------------------------------------------------- reconciliation

    def on_change(self, change_type: ChangeType, snapshot: OrderSnapshot) -> None:
        """Change-feed listener; idempotent for repeated snapshots."""
        self._apply_change(change_type, snapshot)
        if change_type == ChangeType.DELETED:
            self._discard(snapshot.id)
        else:
            self._confirm(snapshot)

    def _apply_change(self, change_type: ChangeType, snapshot: OrderSnapshot) -> None:
        raise NotImplementedError

    def _index_of(self, order_id: int) -> int | None:
        return next((index for index, order in enumerate(self._confirmed) if order.id == order_id), None)

    def _replace(self, snapshot: OrderSnapshot) -> bool:
        index = self._index_of(snapshot.id)
        if index is None:
            return False
        self._confirmed[index] = snapshot
        return True

    def _remove(self, order_id: int) -> bool:
        index = self._index_of(order_id)
        if index is None:
            return False
        del self._confirmed[index]
        return True

    def _replace_all(self, snapshots: Sequence[OrderSnapshot]) -> None:
        self._confirmed = list(snapshots)
        by_id: dict[int, OrderSnapshot] = {snapshot.id: snapshot for snapshot in snapshots}
        kept: dict[int, PendingMutation] = {}
        for token, mutation in self._pending.items():
            if mutation.settled:
                continue
            snapshot = by_id.get(mutation.order_id)
            if snapshot is None or not mutation.reflected_in(snapshot):
                kept[token] = mutation
        self._pending = kept

    def _confirm(self, snapshot: OrderSnapshot) -> None:
        """Drop overlay entries of this order that the snapshot makes redundant.

        A snapshot read before the write committed still shows the old
        statuses, so an unsettled entry only goes once the statuses show up.
        """
        self._pending = {
            token: m
            for token, m in self._pending.items()
            if not (m.order_id == snapshot.id and (m.settled or m.reflected_in(snapshot)))
        }

    def _discard(self, order_id: int) -> None:
        self._pending = {token: m for token, m in self._pending.items() if m.order_id != order_id}

    # ------------------------------------------------------ optimistic writes

    def _begin(self, order_id: int, item_statuses: dict[int, OrderItemStatus]) -> int:
        self._next_token += 1
        self._pending[self._next_token] = PendingMutation(order_id=order_id, item_statuses=item_statuses)
        return self._next_token

    async def _write_item_statuses(self, item_ids: Sequence[int], status: OrderItemStatus, write) -> None:
        """Apply an item status change locally, then persist it with ``write``.

        On failure the overlay is dropped and the affected orders are
        re-fetched (or the whole list reloaded when none could be identified)
        before the error is re-raised.
        """
        status = OrderItemStatus(status)
        by_order: dict[int, dict[int, OrderItemStatus]] = {}
        for item_id in item_ids:
            order_id = self.order_id_for_item(item_id)
            if order_id is not None:
                by_order.setdefault(order_id, {})[item_id] = status
        tokens: list[int] = [self._begin(order_id, statuses) for order_id, statuses in by_order.items()]

        try:
            await write()
        except Exception:
            for token in tokens:
                self._pending.pop(token, None)
            logger.exception("[%s] Item status write failed; repairing local state.", self.log_tag)
            await self._repair(list(by_order))
            raise

        for token in tokens:
            mutation: PendingMutation | None = self._pending.get(token)
            if mutation is None:
                continue
            index = self._index_of(mutation.order_id)
            if index is None or mutation.reflected_in(self._confirmed[index]):
                del self._pending[token]
            else:
                mutation.settled = True

    async def _repair(self, order_ids: Sequence[int]) -> None:
        if not order_ids:
            await self._safe_refresh()
            return
        for order_id in order_ids:
            try:
                snapshot: OrderSnapshot | None = await self.source.fetch_order_aggregate(order_id)
            except Exception:
                logger.exception("[%s] Re-fetch of order_id=%s failed; reloading.", self.log_tag, order_id)
                await self._safe_refresh()
                return
            if snapshot is None:
                index = self._index_of(order_id)
                if index is not None:
                    self._apply_change(ChangeType.DELETED, self._confirmed[index])
                self._discard(order_id)
            else:
                self._apply_change(ChangeType.UPDATED, snapshot)
                self._confirm(snapshot)

    async def _safe_refresh(self) -> None:
        try:
            await self.refresh()
        except Exception:
            logger.exception("[%s] Reload failed; keeping previous state.", self.log_tag)

    async def refresh(self) -> None:
        raise NotImplementedError

