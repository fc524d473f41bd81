from app.models.user import User, UserRoleType
from app.models.product import Product, ProductStatus
from app.models.order import (
    Order, OrderItem, OrderStatusHistory,
    OrderStatus, PaymentStatus, OrderType,
)

__all__ = [
    "User",
    "UserRoleType",
    "Product",
    "ProductStatus",
    "Order",
    "OrderItem",
    "OrderStatusHistory",
    "OrderStatus",
    "PaymentStatus",
    "OrderType",
]
