"""Menu models - categories and items."""

from __future__ import annotations

from decimal import Decimal
from typing import List, Optional

from sqlalchemy import Boolean, ForeignKey, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from restopos.db.base import Base, SoftDeleteMixin, TimestampMixin
from restopos.models.validators import non_negative


class Category(Base, TimestampMixin, SoftDeleteMixin):
    """Menu category."""

    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    items: Mapped[List["MenuItem"]] = relationship(back_populates="category")


class MenuItem(Base, TimestampMixin):
    """Dish or drink that can be ordered."""

    __tablename__ = "menu_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    category_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("categories.id"), nullable=True, index=True
    )
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    image_public_id: Mapped[Optional[str]] = mapped_column(String(300), nullable=True)

    category: Mapped[Optional[Category]] = relationship(back_populates="items")

    @validates("price")
    def _validate_price(self, key, value):
        return non_negative(key, value)
