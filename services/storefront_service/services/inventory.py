"""Inventory allocator: per-product digital-content stock.

Stock is the ordered ``Product.digital_content`` list; allocation takes from the
front. Every stock or availability write is an optimistic conditional UPDATE
guarded by ``Product.stock_version``: the writer that loses re-reads the row and
tries again, so concurrent allocations never hand out the same item twice.
"""

import uuid
from decimal import Decimal
from typing import Callable, Optional, Sequence

from libs.common.config import get_settings
from libs.common.currency import to_money
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.storefront_service.errors import (
    ConcurrentUpdateError,
    InsufficientStockError,
    InvalidAmountError,
    ProductNotFoundError,
    ValidationError,
)
from services.storefront_service.models import Product, derive_availability
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

# Takes the current stock, returns (new stock, value handed back to the caller).
StockMutation = Callable[[list[str]], tuple[list[str], object]]


async def get_product(db: AsyncSession, product_id: uuid.UUID) -> Product:
    """Load a product with fresh column values. Raises if missing."""
    product = await db.get(Product, product_id, populate_existing=True)
    if product is None:
        raise ProductNotFoundError(product_id)
    return product


async def available_count(db: AsyncSession, product_id: uuid.UUID) -> int:
    product = await get_product(db, product_id)
    return product.stock_count


async def list_products(
    db: AsyncSession,
    *,
    category: Optional[str] = None,
    include_unpurchasable: bool = False,
) -> list[Product]:
    """Catalog listing; by default only products that can be bought or pre-ordered."""
    query = select(Product).order_by(Product.category, Product.name)
    if category:
        query = query.where(Product.category == category)
    if not include_unpurchasable:
        query = query.where(
            or_(
                Product.is_available.is_(True),
                Product.allow_preorder.is_(True),
            )
        )
    result = await db.execute(query.execution_options(populate_existing=True))
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Conditional stock write
# ---------------------------------------------------------------------------


async def _write_stock(
    db: AsyncSession,
    product_id: uuid.UUID,
    mutate: StockMutation,
    *,
    force_unavailable: Optional[bool] = None,
    action: str,
):
    """Read, mutate and conditionally write the stock list until one write wins.

    ``mutate`` may raise to abort (e.g. insufficient stock on the fresh read);
    nothing is written in that case. The session is never rolled back here, so
    ORM objects the caller holds stay loaded.
    """
    attempts = get_settings().STOCK_WRITE_ATTEMPTS
    for attempt in range(1, attempts + 1):
        product = await get_product(db, product_id)
        new_stock, outcome = mutate(list(product.digital_content or []))
        forced = (
            product.force_unavailable if force_unavailable is None else force_unavailable
        )

        result = await db.execute(
            update(Product)
            .where(
                Product.id == product_id,
                Product.stock_version == product.stock_version,
            )
            .values(
                digital_content=new_stock,
                force_unavailable=forced,
                is_available=derive_availability(new_stock, forced),
                stock_version=product.stock_version + 1,
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            await db.commit()
            logger.info(
                "Stock %s on product %s: %d item(s) left (version %d)",
                action,
                product_id,
                len(new_stock),
                product.stock_version + 1,
            )
            return outcome

        # The UPDATE matched nothing; close the transaction before re-reading.
        await db.commit()
        logger.warning(
            "Stock %s on product %s lost a concurrent write (attempt %d/%d)",
            action,
            product_id,
            attempt,
            attempts,
        )

    raise ConcurrentUpdateError(
        f"Stock {action} on product {product_id} failed after {attempts} attempts"
    )


async def allocate(
    db: AsyncSession, *, product_id: uuid.UUID, quantity: int
) -> list[str]:
    """Remove and return the first ``quantity`` items of the product's stock.

    Raises ``InsufficientStockError`` and changes nothing when fewer remain.
    """
    if not isinstance(quantity, int) or quantity <= 0:
        raise InvalidAmountError(quantity)

    def take(stock: list[str]) -> tuple[list[str], list[str]]:
        if len(stock) < quantity:
            raise InsufficientStockError(product_id, quantity, len(stock))
        return stock[quantity:], stock[:quantity]

    return await _write_stock(db, product_id, take, action="allocate")


async def release(
    db: AsyncSession, *, product_id: uuid.UUID, items: Sequence[str]
) -> Product:
    """Put previously allocated items back at the front, in their original order."""
    items = list(items)
    if items:

        def put_back(stock: list[str]) -> tuple[list[str], None]:
            return items + stock, None

        await _write_stock(db, product_id, put_back, action="release")
    return await get_product(db, product_id)


# ---------------------------------------------------------------------------
# Admin mutation surface
# ---------------------------------------------------------------------------


async def create_product(
    db: AsyncSession,
    *,
    name: str,
    price: Decimal,
    gcoin_price: int,
    description: Optional[str] = None,
    category: Optional[str] = None,
    digital_content: Optional[Sequence[str]] = None,
    allow_preorder: bool = False,
    preorder_note: Optional[str] = None,
) -> Product:
    if not isinstance(gcoin_price, int) or gcoin_price <= 0:
        raise InvalidAmountError(gcoin_price)
    price = to_money(price)
    if price < 0:
        raise ValidationError("Price cannot be negative")

    stock = [item for item in (digital_content or []) if item]
    product = Product(
        name=name,
        description=description,
        category=category,
        price=price,
        gcoin_price=gcoin_price,
        digital_content=stock,
        is_available=derive_availability(stock, False),
        force_unavailable=False,
        stock_version=0,
        allow_preorder=allow_preorder,
        preorder_note=preorder_note,
    )
    db.add(product)
    await db.commit()
    await db.refresh(product)

    logger.info("Created product %s (%s) with %d item(s)", product.id, name, len(stock))
    return product


async def restock(
    db: AsyncSession, *, product_id: uuid.UUID, items: Sequence[str]
) -> Product:
    """Append new content items at the back of the stock."""
    new_items = [item for item in items if item]
    if not new_items:
        raise ValidationError("Restock requires at least one content item")

    def append(stock: list[str]) -> tuple[list[str], None]:
        return stock + new_items, None

    await _write_stock(db, product_id, append, action="restock")
    return await get_product(db, product_id)


async def set_force_unavailable(
    db: AsyncSession, *, product_id: uuid.UUID, force_unavailable: bool
) -> Product:
    """Admin availability switch; availability is re-derived from stock."""

    def unchanged(stock: list[str]) -> tuple[list[str], None]:
        return stock, None

    await _write_stock(
        db,
        product_id,
        unchanged,
        force_unavailable=force_unavailable,
        action="availability switch",
    )
    return await get_product(db, product_id)


async def update_prices(
    db: AsyncSession,
    *,
    product_id: uuid.UUID,
    price: Optional[Decimal] = None,
    gcoin_price: Optional[int] = None,
    allow_preorder: Optional[bool] = None,
    preorder_note: Optional[str] = None,
) -> Product:
    """Change catalog fields. Existing orders keep their frozen unit price."""
    product = await get_product(db, product_id)
    if price is not None:
        price = to_money(price)
        if price < 0:
            raise ValidationError("Price cannot be negative")
        product.price = price
    if gcoin_price is not None:
        if not isinstance(gcoin_price, int) or gcoin_price <= 0:
            raise InvalidAmountError(gcoin_price)
        product.gcoin_price = gcoin_price
    if allow_preorder is not None:
        product.allow_preorder = allow_preorder
    if preorder_note is not None:
        product.preorder_note = preorder_note

    await db.commit()
    await db.refresh(product)
    logger.info("Updated catalog fields of product %s", product_id)
    return product
