"""Shared FastAPI dependencies."""

from app.db import session as db_session
from app.services.order_service import OrderService


def get_order_service() -> OrderService:
    """Build the order service on the process-wide session factory and change feed."""
    return OrderService(db_session.SessionLocal, db_session.change_feed)
