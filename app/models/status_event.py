"""Append-only log of order item status transitions."""

from datetime import datetime, timezone

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class OrderItemStatusEvent(Base):
    """Stores an immutable trail of item status changes."""

    __tablename__ = "order_item_status_events"

    id: Mapped[int] = mapped_column(primary_key=True)
    # Plain integer so the trail outlives deleted order items.
    order_item_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    old_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    new_status: Mapped[str] = mapped_column(String(32), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
