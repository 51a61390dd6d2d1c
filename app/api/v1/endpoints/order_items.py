"""Order item endpoints: status transitions and line edits."""

from fastapi import APIRouter, Depends, HTTPException, Response, status

from app.api.deps import get_order_service
from app.schemas.order import EditOrderItemInput, ItemStatusUpdate, ItemsStatusUpdate, OrderItemSnapshot
from app.services.order_service import OrderItemNotFoundError, OrderService, OrderValidationError
from app.services.order_status import InvalidItemTransitionError

router: APIRouter = APIRouter()


@router.post("/status")
async def set_items_status(
    payload: ItemsStatusUpdate,
    service: OrderService = Depends(get_order_service),
) -> dict[str, list[int]]:
    """Move several items at once, e.g. a whole category group in the kitchen."""
    try:
        order_ids: list[int] = await service.set_items_status(payload.item_ids, payload.status)
    except InvalidItemTransitionError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return {"order_ids": order_ids}


@router.post("/{item_id}/status", response_model=OrderItemSnapshot)
async def set_item_status(
    item_id: int,
    payload: ItemStatusUpdate,
    service: OrderService = Depends(get_order_service),
) -> OrderItemSnapshot:
    try:
        return await service.set_item_status(item_id, payload.status)
    except OrderItemNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Order item not found") from exc
    except InvalidItemTransitionError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@router.patch("/{item_id}", response_model=OrderItemSnapshot)
async def edit_order_item(
    item_id: int,
    payload: EditOrderItemInput,
    service: OrderService = Depends(get_order_service),
) -> OrderItemSnapshot:
    """Replace quantity, notes and modifiers of one line."""
    try:
        return await service.edit_order_item(item_id, payload)
    except OrderItemNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Order item not found") from exc
    except OrderValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.delete("/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_order_item(item_id: int, service: OrderService = Depends(get_order_service)) -> Response:
    try:
        await service.delete_order_item(item_id)
    except OrderItemNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Order item not found") from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)
