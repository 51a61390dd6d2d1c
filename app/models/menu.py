"""Menu catalog ORM models."""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base


class Category(Base):
    """Menu category used by the terminal tabs and the kitchen filter."""

    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    items: Mapped[list["CatalogItem"]] = relationship(back_populates="category")


class CatalogItem(Base):
    """Sellable dish in the catalog."""

    __tablename__ = "catalog_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    category_id: Mapped[int | None] = mapped_column(ForeignKey("categories.id"), nullable=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    base_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # Items that skip the kitchen queue are created already done.
    no_prep_needed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    category: Mapped[Category | None] = relationship(back_populates="items")
    modifier_links: Mapped[list["ItemModifier"]] = relationship(back_populates="item", cascade="all, delete-orphan")


class Modifier(Base):
    """Live modifier definition; orders keep a snapshot instead of referencing it."""

    __tablename__ = "modifiers"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    price_delta: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class ItemModifier(Base):
    """Links a modifier to the catalog items it may be applied to."""

    __tablename__ = "item_modifiers"
    __table_args__ = (UniqueConstraint("item_id", "modifier_id", name="uq_item_modifiers_item_modifier"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    item_id: Mapped[int] = mapped_column(ForeignKey("catalog_items.id"), nullable=False)
    modifier_id: Mapped[int] = mapped_column(ForeignKey("modifiers.id"), nullable=False)

    item: Mapped[CatalogItem] = relationship(back_populates="modifier_links")
    modifier: Mapped[Modifier] = relationship()
