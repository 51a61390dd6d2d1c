"""Database seeding helpers."""

import logging
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import Campaign, CatalogItem, Category, ItemModifier, Modifier

logger = logging.getLogger(__name__)


async def ensure_demo_catalog(session: AsyncSession) -> bool:
    """Create a demo campaign and catalog when the catalog is empty.

    Returns:
        bool: True when demo rows were created by this call.
    """
    item_count: int = int(await session.scalar(select(func.count()).select_from(CatalogItem)) or 0)
    if item_count:
        return False

    campaign = Campaign(name="Market Day", is_active=True)
    food = Category(name="Food", slug="food", display_order=1)
    drinks = Category(name="Drinks", slug="drinks", display_order=2)
    session.add_all([campaign, food, drinks])
    await session.flush()

    waffle = CatalogItem(category_id=food.id, name="Waffle", base_price=Decimal("3.50"))
    toastie = CatalogItem(category_id=food.id, name="Toastie", base_price=Decimal("5.00"))
    lemonade = CatalogItem(category_id=drinks.id, name="Lemonade", base_price=Decimal("2.50"), no_prep_needed=True)
    cream = Modifier(name="Whipped cream", price_delta=Decimal("1.50"))
    cheese = Modifier(name="Extra cheese", price_delta=Decimal("1.00"))
    session.add_all([waffle, toastie, lemonade, cream, cheese])
    await session.flush()

    session.add_all(
        [
            ItemModifier(item_id=waffle.id, modifier_id=cream.id),
            ItemModifier(item_id=toastie.id, modifier_id=cheese.id),
        ]
    )
    await session.commit()
    logger.warning("[BOOTSTRAP] Demo campaign and catalog created; disable with SEED_DEMO_CATALOG=0.")
    return True
