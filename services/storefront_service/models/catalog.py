"""Product model: catalog entry embedding its digital-content stock."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base, JSONVariant
from sqlalchemy import Boolean, CheckConstraint, DateTime, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column


class Product(Base):
    """Digital product. ``digital_content`` is the allocatable stock, FIFO."""

    __tablename__ = "products"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(100), index=True)

    # Pricing
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    gcoin_price: Mapped[int] = mapped_column(Integer, nullable=False)

    # Stock: list length is the inventory count, there is no separate counter.
    digital_content: Mapped[list[str]] = mapped_column(
        JSONVariant, default=list, nullable=False
    )
    is_available: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    force_unavailable: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    # Bumped by every stock or availability write; the conditional-write token.
    stock_version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Preorders
    allow_preorder: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    preorder_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_product_price_non_negative"),
        CheckConstraint("gcoin_price > 0", name="ck_product_gcoin_price_positive"),
    )

    @property
    def stock_count(self) -> int:
        return len(self.digital_content or [])

    @property
    def purchasable(self) -> bool:
        """Can be bought now or pre-ordered."""
        return self.is_available or self.allow_preorder

    def __repr__(self) -> str:
        return f"<Product {self.id} {self.name!r} stock={self.stock_count}>"


def derive_availability(stock: list[str], force_unavailable: bool) -> bool:
    """Availability is true iff stock is non-empty, unless an admin forced it off."""
    return bool(stock) and not force_unavailable
