import uuid
from datetime import datetime, date, timezone
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, DateTime, Date, ForeignKey, Integer, Text, Index, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.db_types import UUIDType, JSONType
from app.core.enum_utils import enum_comment

if TYPE_CHECKING:
    from app.models.user import User


class ProductStatus(str, Enum):
    """Product listing status. OUT_OF_STOCK is derived from available_stock."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    DRAFT = "draft"
    OUT_OF_STOCK = "out_of_stock"


# Statuses a new order may be placed against
FULFILLABLE_STATUSES = (ProductStatus.ACTIVE.value, ProductStatus.DRAFT.value)


class Product(Base):
    """
    A seller's discounted listing plus its inventory record.

    available_stock, order_count, total_sold and the derived status are
    written only by InventoryLedger.
    """
    __tablename__ = "products"
    __table_args__ = (
        Index('ix_product_seller_status', 'seller_id', 'status'),
        Index('ix_product_expiry_date', 'expiry_date'),
        CheckConstraint('available_stock >= 0', name='ck_product_stock_non_negative'),
        CheckConstraint('order_count >= 0', name='ck_product_order_count_non_negative'),
        CheckConstraint('total_sold >= 0', name='ck_product_total_sold_non_negative'),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    seller_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Basic Info
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(
        String(20),
        default=ProductStatus.DRAFT.value,
        nullable=False,
        index=True,
        comment=enum_comment(ProductStatus)
    )

    # Pricing (integer minor currency units)
    retail_price: Mapped[int] = mapped_column(Integer, nullable=False)
    retail_unit: Mapped[str] = mapped_column(String(20), nullable=False)
    retail_min_quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    bulk_tiers: Mapped[Optional[List[dict]]] = mapped_column(
        JSONType,
        nullable=True,
        comment="[{name, price, unit, min_quantity}] in listing order"
    )

    # Inventory
    available_stock: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    low_stock_threshold: Mapped[int] = mapped_column(Integer, default=10, nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False)

    # Stats
    order_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_sold: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Listing lifecycle
    expiry_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    pickup_address: Mapped[Optional[str]] = mapped_column(String(300), nullable=True)
    pickup_city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    # Relationships
    seller: Mapped["User"] = relationship("User")

    @property
    def is_low_stock(self) -> bool:
        return self.available_stock <= self.low_stock_threshold

    @property
    def bulk_tier_list(self) -> List[dict]:
        """Bulk tiers as stored, empty list when none are defined."""
        return list(self.bulk_tiers or [])

    def pickup_location(self) -> Optional[dict]:
        if not self.pickup_address or not self.pickup_city:
            return None
        return {"address": self.pickup_address, "city": self.pickup_city}

    def __repr__(self) -> str:
        return f"<Product(name='{self.name}', stock={self.available_stock}, status='{self.status}')>"
