import uuid
from datetime import datetime, timezone, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, DateTime, ForeignKey, Integer, Text, Index, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.db_types import UUIDType, JSONType
from app.core.enum_utils import enum_comment

if TYPE_CHECKING:
    from app.models.user import User


class OrderStatus(str, Enum):
    """Order status enumeration - pickup flow."""
    PENDING = "pending"                    # Created, stock reserved
    CONFIRMED = "confirmed"                # Seller accepted or payment received
    READY_FOR_PICKUP = "ready_for_pickup"  # Paid and packed, waiting for the buyer
    COMPLETED = "completed"                # Picked up with the correct code
    CANCELLED = "cancelled"                # Cancelled by a party or expired


TERMINAL_STATUSES = (OrderStatus.COMPLETED.value, OrderStatus.CANCELLED.value)


class PaymentStatus(str, Enum):
    """Payment status enumeration."""
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class OrderType(str, Enum):
    """Decides which price tier applies."""
    RETAIL = "retail"
    BULK = "bulk"


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Order(Base):
    """
    Pickup order placed by a buyer against a single seller.

    total_amount and item prices are a snapshot taken at creation; they are
    never recomputed. pickup_code is generated once and never changes.
    """
    __tablename__ = "orders"
    __table_args__ = (
        Index('ix_order_status_created', 'status', 'created_at'),
        Index('ix_order_buyer_created', 'buyer_id', 'created_at'),
        Index('ix_order_seller_status', 'seller_id', 'status'),
        Index('ix_order_pickup_code_seller', 'pickup_code', 'seller_id'),
        CheckConstraint('total_amount >= 0', name='ck_order_total_non_negative'),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )

    # Order Identification
    order_number: Mapped[str] = mapped_column(
        String(30),
        unique=True,
        nullable=False,
        index=True
    )

    # Parties
    buyer_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False
    )
    seller_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False
    )

    order_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment=enum_comment(OrderType)
    )

    # Status
    status: Mapped[str] = mapped_column(
        String(30),
        default=OrderStatus.PENDING.value,
        nullable=False,
        index=True,
        comment=enum_comment(OrderStatus)
    )

    # Pricing (integer minor currency units)
    total_amount: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Sum of item subtotals at creation"
    )

    # Payment
    payment_status: Mapped[str] = mapped_column(
        String(20),
        default=PaymentStatus.PENDING.value,
        nullable=False,
        comment=enum_comment(PaymentStatus)
    )
    payment_reference: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        index=True
    )
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Pickup
    pickup_code: Mapped[str] = mapped_column(
        String(4),
        nullable=False,
        comment="4-digit code the buyer shows at handoff"
    )
    pickup_location: Mapped[dict] = mapped_column(JSONType, nullable=False)
    scheduled_pickup_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    picked_up_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Notes
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    buyer: Mapped["User"] = relationship("User", foreign_keys=[buyer_id], lazy="selectin")
    seller: Mapped["User"] = relationship("User", foreign_keys=[seller_id], lazy="selectin")
    items: Mapped[List["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin"
    )
    status_history: Mapped[List["OrderStatusHistory"]] = relationship(
        "OrderStatusHistory",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderStatusHistory.created_at",
        lazy="selectin"
    )

    @property
    def item_count(self) -> int:
        """Get total number of units across items."""
        return sum(item.quantity for item in self.items)

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID.value

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_pickup_ready(self) -> bool:
        return self.status == OrderStatus.READY_FOR_PICKUP.value and self.is_paid

    def is_expired(self, max_age_hours: int = 24, now: Optional[datetime] = None) -> bool:
        """True once an unfinished order is older than max_age_hours."""
        if self.is_terminal:
            return False
        now = now or datetime.now(timezone.utc)
        return now - as_utc(self.created_at) > timedelta(hours=max_age_hours)

    def __repr__(self) -> str:
        return f"<Order(number='{self.order_number}', status='{self.status}')>"


class OrderItem(Base):
    """Order line item with a product snapshot."""
    __tablename__ = "order_items"
    __table_args__ = (
        CheckConstraint('quantity >= 1', name='ck_order_item_quantity_positive'),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    # Nulled when the listing is purged; product_name keeps the record readable
    product_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("products.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    # Product snapshot (stored for historical record)
    product_name: Mapped[str] = mapped_column(String(100), nullable=False)

    # Quantity & Pricing
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[int] = mapped_column(Integer, nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False)
    subtotal: Mapped[int] = mapped_column(Integer, nullable=False)

    # Relationships
    order: Mapped["Order"] = relationship("Order", back_populates="items")

    def __repr__(self) -> str:
        return f"<OrderItem(product='{self.product_name}', qty={self.quantity})>"


class OrderStatusHistory(Base):
    """Order status change history."""
    __tablename__ = "order_status_history"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    from_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    to_status: Mapped[str] = mapped_column(String(30), nullable=False)
    event: Mapped[str] = mapped_column(String(30), nullable=False)

    # None for system actions (expiry sweep)
    changed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    # Relationships
    order: Mapped["Order"] = relationship("Order", back_populates="status_history")

    def __repr__(self) -> str:
        return f"<OrderStatusHistory(from='{self.from_status}', to='{self.to_status}')>"
