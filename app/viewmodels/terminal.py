"""Terminal view-model: paginated, most-recent-first orders of a campaign."""

from __future__ import annotations

import logging

from app.core.config import settings
from app.core.enums import OrderItemStatus
from app.schemas.order import EditOrderItemInput, OrderItemSnapshot, OrdersPage, OrderSnapshot
from app.services.change_feed import ChangeType
from app.viewmodels.base import OrderListViewModel, OrderSource

logger = logging.getLogger(__name__)


class TerminalViewModel(OrderListViewModel):
    """Recent orders for the order-entry terminal, kept live by the change feed."""

    log_tag = "TERMINAL"

    def __init__(self, source: OrderSource, campaign_id: int, page_size: int | None = None) -> None:
        super().__init__(source, campaign_id)
        self.page_size: int = page_size or settings.recent_orders_page_size
        self.total_count: int = 0
        self._reached_end: bool = False

    @property
    def has_more(self) -> bool:
        return not self._reached_end and len(self._confirmed) < self.total_count

    async def start(self) -> None:
        """Subscribe to the campaign's order and item changes and load page 1.

        Item-level updates are included: picking up one line of a ready order
        does not touch the order row.
        """
        if self._unsubscribe is None:
            self._unsubscribe = self.source.subscribe_items(self.on_change, self.campaign_id)
        await self.refresh()

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def refresh(self) -> None:
        """Reset to page 1."""
        result: OrdersPage = await self.source.fetch_orders_page(self.campaign_id, page=1, page_size=self.page_size)
        self._replace_all(result.orders)
        self.total_count = result.total_count
        self._reached_end = not result.has_more

    async def load_more(self) -> None:
        """Fetch the orders older than the last listed one and append them.

        Paging continues from the last listed order rather than a page
        number, so orders inserted or deleted since the first load do not
        shift the window.
        """
        if not self.has_more:
            return
        if not self._confirmed:
            await self.refresh()
            return
        last: OrderSnapshot = self._confirmed[-1]
        result: OrdersPage = await self.source.fetch_orders_page(
            self.campaign_id, page_size=self.page_size, before=(last.created_at, last.id)
        )
        known: set[int] = {order.id for order in self._confirmed}
        self._confirmed.extend(order for order in result.orders if order.id not in known)
        self.total_count = result.total_count
        self._reached_end = not result.has_more

    def _apply_change(self, change_type: ChangeType, snapshot: OrderSnapshot) -> None:
        if change_type == ChangeType.DELETED:
            if self._remove(snapshot.id):
                self.total_count = max(self.total_count - 1, 0)
            return
        if self._replace(snapshot):
            return
        if change_type == ChangeType.INSERTED:
            self._confirmed.insert(0, snapshot)
            self.total_count += 1

    # ----------------------------------------------------------- staff actions

    async def set_item_status(self, item_id: int, status: OrderItemStatus) -> None:
        async def write() -> None:
            await self.source.set_item_status(item_id, status)

        await self._write_item_statuses([item_id], status, write)

    async def mark_item_picked_up(self, item_id: int) -> None:
        await self.set_item_status(item_id, OrderItemStatus.PICKED_UP)

    async def edit_item(
        self,
        item_id: int,
        quantity: int,
        notes: str | None = None,
        modifier_ids: list[int] | None = None,
    ) -> OrderItemSnapshot | None:
        """Edit one line; a quantity below one removes the line instead."""
        if quantity < 1:
            await self.delete_item(item_id)
            return None
        order_id: int | None = self.order_id_for_item(item_id)
        try:
            edited: OrderItemSnapshot = await self.source.edit_order_item(
                item_id, EditOrderItemInput(quantity=quantity, notes=notes, modifier_ids=modifier_ids or [])
            )
        except Exception:
            logger.exception("[TERMINAL] Editing order_item_id=%s failed; re-fetching.", item_id)
            await self._repair([order_id] if order_id is not None else [])
            raise
        await self._repair([edited.order_id])
        return edited

    async def delete_item(self, item_id: int) -> None:
        order_id: int | None = self.order_id_for_item(item_id)
        try:
            await self.source.delete_order_item(item_id)
        except Exception:
            logger.exception("[TERMINAL] Deleting order_item_id=%s failed; re-fetching.", item_id)
            await self._repair([order_id] if order_id is not None else [])
            raise
        await self._repair([order_id] if order_id is not None else [])
