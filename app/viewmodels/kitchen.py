"""Kitchen view-model: live working set of orders still to be prepared.

The change feed is the low-latency path; a fixed-interval full re-fetch runs
alongside it and is the correctness backstop for dropped deliveries.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Sequence
from enum import Enum

from app.core.config import settings
from app.core.enums import KITCHEN_VISIBLE_STATUSES, OrderItemStatus, OrderStatus
from app.schemas.order import OrderSnapshot
from app.services.change_feed import ChangeType
from app.services.order_status import derive_order_status
from app.viewmodels.base import OrderListViewModel, OrderSource, created_sort_key

logger = logging.getLogger(__name__)


class KitchenLane(str, Enum):
    NEW = "new"
    IN_PROGRESS = "in_progress"
    READY = "ready"


LANE_BY_STATUS: dict[OrderStatus, KitchenLane] = {
    OrderStatus.NEW: KitchenLane.NEW,
    OrderStatus.IN_PROGRESS: KitchenLane.IN_PROGRESS,
    OrderStatus.READY: KitchenLane.READY,
}

FINISHED_ITEM_STATUSES: frozenset[OrderItemStatus] = frozenset({OrderItemStatus.PICKED_UP, OrderItemStatus.CANCELLED})


def lane_for(order: OrderSnapshot, category_id: int | None = None) -> KitchenLane | None:
    """Return the display lane of an order, or ``None`` when it is not shown.

    With a category filter, the lane comes from the same aggregation rule
    applied to only the order's items in that category, and the order is shown
    only while one of those items is still unfinished.
    """
    if category_id is None:
        return LANE_BY_STATUS.get(order.status)
    category_items = [item for item in order.items if item.category_id == category_id]
    if not any(item.status not in FINISHED_ITEM_STATUSES for item in category_items):
        return None
    derived: OrderStatus | None = derive_order_status(item.status for item in category_items)
    return LANE_BY_STATUS.get(derived) if derived is not None else None


class KitchenViewModel(OrderListViewModel):
    """Campaign orders whose status is new, in progress or ready, oldest first."""

    log_tag = "KITCHEN"

    def __init__(self, source: OrderSource, campaign_id: int, poll_interval: float | None = None) -> None:
        super().__init__(source, campaign_id)
        self.poll_interval: float = settings.kitchen_poll_seconds if poll_interval is None else poll_interval
        self._poll_task: asyncio.Task | None = None

    async def start(self) -> None:
        """Subscribe to order and item changes, load, and start the backstop poll."""
        if self._unsubscribe is None:
            self._unsubscribe = self.source.subscribe_items(self.on_change, self.campaign_id)
        await self.refresh()
        if self._poll_task is None:
            self._poll_task = asyncio.create_task(self._poll_loop())

    async def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._poll_task is not None:
            self._poll_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._poll_task
            self._poll_task = None

    async def refresh(self) -> None:
        orders: list[OrderSnapshot] = await self.source.fetch_active_orders(self.campaign_id)
        self._replace_all(sorted(orders, key=created_sort_key))

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            try:
                await self.refresh()
            except Exception:
                logger.exception("[KITCHEN] Poll for campaign_id=%s failed; retrying next tick.", self.campaign_id)

    def _apply_change(self, change_type: ChangeType, snapshot: OrderSnapshot) -> None:
        if change_type == ChangeType.DELETED or snapshot.status not in KITCHEN_VISIBLE_STATUSES:
            self._remove(snapshot.id)
            return
        if self._replace(snapshot):
            return
        self._confirmed.append(snapshot)
        self._confirmed.sort(key=created_sort_key)

    # ----------------------------------------------------------------- views

    def visible_orders(self, category_id: int | None = None) -> list[OrderSnapshot]:
        return [order for order in self.orders if lane_for(order, category_id) is not None]

    def lanes(self, category_id: int | None = None) -> dict[KitchenLane, list[OrderSnapshot]]:
        grouped: dict[KitchenLane, list[OrderSnapshot]] = {lane: [] for lane in KitchenLane}
        for order in self.orders:
            lane: KitchenLane | None = lane_for(order, category_id)
            if lane is not None:
                grouped[lane].append(order)
        return grouped

    def lane_counts(self, category_id: int | None = None) -> dict[KitchenLane, int]:
        return {lane: len(orders) for lane, orders in self.lanes(category_id).items()}

    # ----------------------------------------------------------- staff actions

    async def set_items_status(self, item_ids: Sequence[int], status: OrderItemStatus) -> None:
        item_ids = list(item_ids)

        async def write() -> None:
            await self.source.set_items_status(item_ids, status)

        await self._write_item_statuses(item_ids, status, write)

    async def start_items(self, item_ids: Sequence[int]) -> None:
        await self.set_items_status(item_ids, OrderItemStatus.IN_PROGRESS)

    async def complete_items(self, item_ids: Sequence[int]) -> None:
        await self.set_items_status(item_ids, OrderItemStatus.DONE)
