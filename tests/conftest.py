"""Shared fixtures: a fresh SQLite database per test with a small catalog."""

import asyncio
from collections.abc import AsyncGenerator, Awaitable, Callable
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from app.db.base import Base
from app.db.session import build_engine, build_session_factory
from app.models import Campaign, CatalogItem, Category, Modifier
from app.schemas.order import OrderLineInput, OrderSnapshot, PlaceOrderInput
from app.services.change_feed import ChangeFeed
from app.services.order_service import OrderService


@dataclass
class Catalog:
    campaign_id: int
    other_campaign_id: int
    food_id: int
    drinks_id: int
    waffle_id: int
    toastie_id: int
    lemonade_id: int
    cream_id: int
    cheese_id: int


@pytest.fixture
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    test_engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'kitchen_pos_test.db'}")
    async with test_engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def feed() -> ChangeFeed:
    return ChangeFeed()


@pytest.fixture
def session_factory(engine: AsyncEngine, feed: ChangeFeed) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(engine, feed)


@pytest.fixture
async def service(session_factory: async_sessionmaker[AsyncSession], feed: ChangeFeed) -> AsyncGenerator[OrderService, None]:
    order_service = OrderService(session_factory, feed, enforce_transitions=False)
    yield order_service
    await feed.drain()


@pytest.fixture
async def catalog(session_factory: async_sessionmaker[AsyncSession]) -> Catalog:
    async with session_factory() as db:
        campaign = Campaign(name="Saturday market", is_active=True)
        other_campaign = Campaign(name="Sunday market", is_active=True)
        food = Category(name="Food", slug="food", display_order=1)
        drinks = Category(name="Drinks", slug="drinks", display_order=2)
        db.add_all([campaign, other_campaign, food, drinks])
        await db.flush()
        waffle = CatalogItem(category_id=food.id, name="Waffle", base_price=Decimal("3.50"))
        toastie = CatalogItem(category_id=food.id, name="Toastie", base_price=Decimal("5.00"))
        lemonade = CatalogItem(
            category_id=drinks.id, name="Lemonade", base_price=Decimal("2.50"), no_prep_needed=True
        )
        cream = Modifier(name="Whipped cream", price_delta=Decimal("1.50"))
        cheese = Modifier(name="Extra cheese", price_delta=Decimal("1.00"))
        db.add_all([waffle, toastie, lemonade, cream, cheese])
        await db.commit()
        return Catalog(
            campaign_id=campaign.id,
            other_campaign_id=other_campaign.id,
            food_id=food.id,
            drinks_id=drinks.id,
            waffle_id=waffle.id,
            toastie_id=toastie.id,
            lemonade_id=lemonade.id,
            cream_id=cream.id,
            cheese_id=cheese.id,
        )


PlaceOrder = Callable[..., Awaitable[OrderSnapshot]]


@pytest.fixture
def place_order(service: OrderService, catalog: Catalog) -> PlaceOrder:
    """Place an order; lines are (catalog_item_id, quantity, modifier_ids) tuples."""

    async def _place(
        *lines: tuple[int, int, list[int]],
        customer_name: str = "Ada",
        campaign_id: int | None = None,
    ) -> OrderSnapshot:
        payload = PlaceOrderInput(
            campaign_id=catalog.campaign_id if campaign_id is None else campaign_id,
            customer_name=customer_name,
            lines=[
                OrderLineInput(catalog_item_id=item_id, quantity=quantity, modifier_ids=modifier_ids)
                for item_id, quantity, modifier_ids in lines
            ],
        )
        return await service.place_order(payload)

    return _place


class ScriptedSource:
    """Wraps the real service; writes can be held or failed and reads are counted."""

    def __init__(self, service: OrderService) -> None:
        self._service = service
        self.gate: asyncio.Event | None = None
        self.fail_writes = False
        self.failing_fetches = 0
        self.drop_feed = False
        self.fetched_order_ids: list[int] = []
        self.page_fetches = 0
        self.active_fetches = 0

    def __getattr__(self, name: str):
        return getattr(self._service, name)

    async def _before_write(self) -> None:
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_writes:
            raise RuntimeError("store unavailable")

    async def set_item_status(self, item_id, status):
        await self._before_write()
        return await self._service.set_item_status(item_id, status)

    async def set_items_status(self, item_ids, status):
        await self._before_write()
        return await self._service.set_items_status(item_ids, status)

    async def fetch_order_aggregate(self, order_id):
        self.fetched_order_ids.append(order_id)
        return await self._service.fetch_order_aggregate(order_id)

    async def fetch_orders_page(self, *args, **kwargs):
        self.page_fetches += 1
        return await self._service.fetch_orders_page(*args, **kwargs)

    async def fetch_active_orders(self, campaign_id):
        self.active_fetches += 1
        if self.failing_fetches:
            self.failing_fetches -= 1
            raise RuntimeError("store unavailable")
        return await self._service.fetch_active_orders(campaign_id)

    def subscribe_items(self, listener, campaign_id=None):
        def relay(change_type, snapshot):
            if self.drop_feed:
                return None
            return listener(change_type, snapshot)

        return self._service.subscribe_items(relay, campaign_id)


@pytest.fixture
def source(service: OrderService) -> ScriptedSource:
    return ScriptedSource(service)
