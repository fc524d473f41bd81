from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
import uuid

from app.core.enum_utils import create_lowercase_validator, VALID_ORDER_TYPES
from app.models.order import OrderType
from app.schemas.base import BaseResponseSchema, BaseCreateSchema


# ==================== ORDER ITEM SCHEMAS ====================

class OrderItemCreate(BaseModel):
    """Order item creation schema."""
    product_id: uuid.UUID
    quantity: int = Field(..., ge=1)


class OrderItemResponse(BaseResponseSchema):
    """Order item response schema. Prices are minor currency units."""
    id: uuid.UUID
    product_id: Optional[uuid.UUID] = None  # None once the listing is purged
    product_name: str
    quantity: int
    unit_price: int
    unit: str
    subtotal: int


# ==================== STATUS HISTORY SCHEMAS ====================

class StatusHistoryResponse(BaseResponseSchema):
    """Order status history response."""
    id: uuid.UUID
    from_status: Optional[str] = None
    to_status: str
    event: str
    changed_by: Optional[uuid.UUID] = None
    notes: Optional[str] = None
    created_at: datetime


# ==================== ORDER SCHEMAS ====================

class OrderCreate(BaseCreateSchema):
    """Order creation schema. An empty item list is rejected by the service."""
    items: List[OrderItemCreate] = []
    order_type: OrderType = OrderType.RETAIL
    scheduled_pickup_time: Optional[datetime] = None
    notes: Optional[str] = Field(None, max_length=500)

    _normalize_order_type = create_lowercase_validator('order_type', VALID_ORDER_TYPES)


class CompletePickupRequest(BaseCreateSchema):
    pickup_code: str = Field(..., min_length=1, max_length=10)


class CancelOrderRequest(BaseCreateSchema):
    reason: Optional[str] = Field(None, max_length=200)


class PaymentSuccessRequest(BaseCreateSchema):
    payment_reference: str = Field(..., min_length=1, max_length=100)


class OrderResponse(BaseResponseSchema):
    """Order response schema."""
    id: uuid.UUID
    order_number: str
    buyer_id: uuid.UUID
    seller_id: uuid.UUID
    order_type: str
    status: str
    total_amount: int
    payment_status: str
    payment_reference: Optional[str] = None
    paid_at: Optional[datetime] = None
    # Hidden from the seller, who has to get it from the buyer at handoff
    pickup_code: Optional[str] = None
    pickup_location: dict
    scheduled_pickup_time: Optional[datetime] = None
    picked_up_at: Optional[datetime] = None
    notes: Optional[str] = None
    cancellation_reason: Optional[str] = None
    item_count: int
    items: List[OrderItemResponse] = []
    created_at: datetime
    updated_at: datetime
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


class OrderDetailResponse(OrderResponse):
    """Detailed order response with history."""
    status_history: List[StatusHistoryResponse] = []
