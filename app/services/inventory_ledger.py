"""
Inventory Ledger - the only writer of product stock.

Every mutation is a single UPDATE statement evaluated by the database, so
concurrent requests never lose each other's writes:

    available_stock, order_count, total_sold and the derived status
    (out_of_stock <-> active) are all set in the same statement.

Callers own the transaction; the ledger never commits.
"""
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import select, update, case
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import InsufficientStockError, NotFoundError, ValidationError
from app.models.product import Product, ProductStatus, FULFILLABLE_STATUSES
from app.services.pricing_service import min_quantity_for

logger = logging.getLogger(__name__)


class StockDirection(str, Enum):
    INCREASE = "increase"  # Undo of an order (cancel / expiry)
    DECREASE = "decrease"  # Order placed


def cannot_fulfill_message(product: Product) -> str:
    return f'Product "{product.name}" cannot fulfill order. Check stock and minimum quantity.'


class InventoryLedger:
    """Stock bookkeeping for listings."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== READS ====================

    async def get_product(self, product_id: uuid.UUID) -> Product:
        """Load a product with fresh column values, bypassing the identity map."""
        result = await self.db.execute(
            select(Product)
            .where(Product.id == product_id)
            .execution_options(populate_existing=True)
        )
        product = result.scalar_one_or_none()
        if not product:
            raise NotFoundError("Product not found")
        return product

    def can_fulfill(self, product: Product, quantity: int, order_type: str) -> bool:
        """
        Check a product can take an order line.

        Checks:
        - quantity meets the minimum for the order type
        - enough stock is available
        - the listing is active or draft
        """
        if quantity < min_quantity_for(product, order_type):
            return False
        if product.available_stock < quantity:
            return False
        return product.status in FULFILLABLE_STATUSES

    # ==================== WRITES ====================

    @staticmethod
    def _status_after(new_stock):
        return case(
            (new_stock <= 0, ProductStatus.OUT_OF_STOCK.value),
            (Product.status == ProductStatus.OUT_OF_STOCK.value, ProductStatus.ACTIVE.value),
            else_=Product.status,
        )

    async def adjust_stock(
        self,
        product_id: uuid.UUID,
        quantity: int,
        direction: StockDirection,
        require_available: bool = False,
    ) -> Product:
        """
        Apply an order-driven stock movement.

        DECREASE clamps stock at zero and bumps order_count/total_sold.
        INCREASE adds stock back and walks the counters down, floored at zero.
        With require_available the decrement only happens if the full quantity
        is on hand; otherwise InsufficientStockError is raised and nothing
        changes.
        """
        if quantity <= 0:
            raise ValidationError("Quantity must be greater than zero")

        direction = StockDirection(direction)
        if direction == StockDirection.DECREASE:
            remaining = Product.available_stock - quantity
            new_stock = case((remaining < 0, 0), else_=remaining)
            values = {
                "available_stock": new_stock,
                "order_count": Product.order_count + 1,
                "total_sold": Product.total_sold + quantity,
            }
        else:
            new_stock = Product.available_stock + quantity
            values = {
                "available_stock": new_stock,
                "order_count": case((Product.order_count > 0, Product.order_count - 1), else_=0),
                "total_sold": case(
                    (Product.total_sold > quantity, Product.total_sold - quantity), else_=0
                ),
            }
        values["status"] = self._status_after(new_stock)
        values["updated_at"] = datetime.now(timezone.utc)

        stmt = update(Product).where(Product.id == product_id)
        if require_available and direction == StockDirection.DECREASE:
            stmt = stmt.where(Product.available_stock >= quantity)
        result = await self.db.execute(
            stmt.values(**values).execution_options(synchronize_session=False)
        )

        product = await self.get_product(product_id)
        if result.rowcount == 0:
            logger.info(
                f"Reservation refused for {product.name}: "
                f"wanted {quantity}, available {product.available_stock}"
            )
            raise InsufficientStockError(cannot_fulfill_message(product), product_id=str(product_id))

        if product.status == ProductStatus.OUT_OF_STOCK.value:
            logger.info(f"Product {product.name} ({product_id}) is now out of stock")
        elif product.is_low_stock and direction == StockDirection.DECREASE:
            logger.warning(f"Low stock for {product.name}: {product.available_stock} {product.unit} left")
        return product

    async def restock(self, product_id: uuid.UUID, quantity: int) -> Product:
        """Add new stock from the seller. Sales counters are left alone."""
        if quantity <= 0:
            raise ValidationError("Quantity must be greater than zero")

        new_stock = Product.available_stock + quantity
        result = await self.db.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(
                available_stock=new_stock,
                status=self._status_after(new_stock),
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundError("Product not found")

        product = await self.get_product(product_id)
        logger.info(f"Restocked {product.name} by {quantity}, now {product.available_stock}")
        return product
