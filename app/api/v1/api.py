"""API v1 router composition."""

from fastapi import APIRouter

from app.api.v1.endpoints import feed, order_items, orders

api_router: APIRouter = APIRouter()
api_router.include_router(orders.router, tags=["orders"])
api_router.include_router(order_items.router, prefix="/order-items", tags=["order-items"])
api_router.include_router(feed.router, tags=["feed"])
