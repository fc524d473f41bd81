import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, Float
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.db_types import UUIDType
from app.core.enum_utils import enum_comment


class UserRoleType(str, Enum):
    """Marketplace role carried by the bearer identity."""
    BUYER = "buyer"
    SELLER = "seller"
    ADMIN = "admin"


class User(Base):
    """
    Identity record for buyers, sellers and admins.

    Only what the order core needs: the role for capability checks, contact
    details for notifications and the seller's default pickup point.
    """
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    role: Mapped[str] = mapped_column(
        String(20),
        default=UserRoleType.BUYER.value,
        nullable=False,
        comment=enum_comment(UserRoleType)
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Seller pickup point (snapshotted onto each order)
    pickup_address: Mapped[Optional[str]] = mapped_column(String(300), nullable=True)
    pickup_city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    pickup_lat: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    pickup_lng: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

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

    @property
    def is_admin(self) -> bool:
        return self.role == UserRoleType.ADMIN.value

    @property
    def is_seller(self) -> bool:
        return self.role == UserRoleType.SELLER.value

    def pickup_location(self) -> Optional[dict]:
        """Pickup location snapshot, or None if the seller has not set one."""
        if not self.pickup_address or not self.pickup_city:
            return None
        location = {"address": self.pickup_address, "city": self.pickup_city}
        if self.pickup_lat is not None and self.pickup_lng is not None:
            location["coordinates"] = {"lat": self.pickup_lat, "lng": self.pickup_lng}
        return location

    def __repr__(self) -> str:
        return f"<User(email='{self.email}', role='{self.role}')>"
