"""WebSocket stream of change-feed deliveries for one campaign."""

import asyncio
import contextlib
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from app.api.deps import get_order_service
from app.schemas.order import OrderSnapshot
from app.services.change_feed import ChangeType
from app.services.order_service import OrderService

logger = logging.getLogger(__name__)
router: APIRouter = APIRouter()


@router.websocket("/campaigns/{campaign_id}/feed")
async def campaign_feed(
    websocket: WebSocket,
    campaign_id: int,
    items: bool = False,
    service: OrderService = Depends(get_order_service),
) -> None:
    """Push ``{"event", "order"}`` messages; ``items=1`` adds item-only changes."""
    await websocket.accept()
    queue: asyncio.Queue[dict] = asyncio.Queue()

    def enqueue(change_type: ChangeType, snapshot: OrderSnapshot) -> None:
        queue.put_nowait({"event": change_type.value, "order": snapshot.model_dump(mode="json")})

    async def forward() -> None:
        while True:
            await websocket.send_json(await queue.get())

    if items:
        unsubscribe = service.subscribe_items(enqueue, campaign_id)
    else:
        unsubscribe = service.subscribe(campaign_id, enqueue)
    logger.info("[FEED] WebSocket subscribed to campaign_id=%s (items=%s).", campaign_id, items)
    sender: asyncio.Task = asyncio.create_task(forward())
    try:
        # Client messages are ignored; receiving is how a disconnect is noticed.
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("[FEED] WebSocket for campaign_id=%s disconnected.", campaign_id)
    finally:
        unsubscribe()
        sender.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sender
