"""Status transition log helpers.

The log is diagnostic: a failed append is logged and swallowed, and never
undoes or blocks the status write it describes.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.enums import OrderItemStatus
from app.models.status_event import OrderItemStatusEvent

logger = logging.getLogger(__name__)

Transition = tuple[int, OrderItemStatus | None, OrderItemStatus]


def _status_value(status: OrderItemStatus | str | None) -> str | None:
    if status is None:
        return None
    return OrderItemStatus(status).value


async def record_transitions(
    session_factory: async_sessionmaker[AsyncSession],
    transitions: Sequence[Transition],
) -> bool:
    """Append one event per transition in a dedicated session.

    Returns whether the events were stored.
    """
    if not transitions:
        return True
    try:
        async with session_factory() as db:
            db.add_all(
                [
                    OrderItemStatusEvent(
                        order_item_id=item_id,
                        old_status=_status_value(old_status),
                        new_status=_status_value(new_status),
                    )
                    for item_id, old_status, new_status in transitions
                ]
            )
            await db.commit()
    except SQLAlchemyError:
        logger.exception("[STATUS_LOG] Failed to record %s status event(s); continuing.", len(transitions))
        return False
    return True


async def record_transition(
    session_factory: async_sessionmaker[AsyncSession],
    item_id: int,
    old_status: OrderItemStatus | None,
    new_status: OrderItemStatus,
) -> bool:
    return await record_transitions(session_factory, [(item_id, old_status, new_status)])
