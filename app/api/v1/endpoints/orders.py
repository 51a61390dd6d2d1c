"""Order endpoints."""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.api.deps import get_order_service
from app.core.enums import OrderStatus
from app.schemas.order import OrderSnapshot, OrdersPage, PlaceOrderInput
from app.services.order_service import OrderNotFoundError, OrderService, OrderValidationError
from app.services.order_status import InvalidItemTransitionError

router: APIRouter = APIRouter()


@router.post("/orders", response_model=OrderSnapshot, status_code=status.HTTP_201_CREATED)
async def place_order(
    payload: PlaceOrderInput,
    service: OrderService = Depends(get_order_service),
) -> OrderSnapshot:
    """Place an order with its lines and modifiers."""
    try:
        return await service.place_order(payload)
    except OrderValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.get("/orders/{order_id}", response_model=OrderSnapshot)
async def get_order(order_id: int, service: OrderService = Depends(get_order_service)) -> OrderSnapshot:
    order: OrderSnapshot | None = await service.fetch_order_aggregate(order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


@router.get("/campaigns/{campaign_id}/orders", response_model=OrdersPage)
async def list_campaign_orders(
    campaign_id: int,
    page: int = Query(default=1, ge=1),
    page_size: int | None = Query(default=None, ge=1, le=100),
    status_value: list[OrderStatus] | None = Query(default=None, alias="status"),
    before_created_at: datetime | None = None,
    before_id: int | None = None,
    service: OrderService = Depends(get_order_service),
) -> OrdersPage:
    """Return one most-recent-first page of the campaign's orders.

    With both ``before_created_at`` and ``before_id`` the page starts after
    that order instead of at ``page``.
    """
    before = (before_created_at, before_id) if before_created_at is not None and before_id is not None else None
    return await service.fetch_orders_page(
        campaign_id, page=page, page_size=page_size, status_filter=status_value, before=before
    )


@router.get("/campaigns/{campaign_id}/kitchen-orders", response_model=list[OrderSnapshot])
async def list_kitchen_orders(
    campaign_id: int,
    service: OrderService = Depends(get_order_service),
) -> list[OrderSnapshot]:
    """Return new, in-progress and ready orders, oldest first."""
    return await service.fetch_active_orders(campaign_id)


@router.post("/orders/{order_id}/pick-up", response_model=OrderSnapshot)
async def pick_up_order(order_id: int, service: OrderService = Depends(get_order_service)) -> OrderSnapshot:
    """Mark every active line of the order picked up."""
    try:
        return await service.mark_order_picked_up(order_id)
    except OrderNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Order not found") from exc
    except InvalidItemTransitionError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
