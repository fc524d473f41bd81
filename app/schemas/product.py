from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import date, datetime
import uuid

from app.schemas.base import BaseResponseSchema, BaseCreateSchema


class BulkTier(BaseModel):
    name: Optional[str] = None
    price: int
    unit: Optional[str] = None
    min_quantity: int = 0


class ProductResponse(BaseResponseSchema):
    """Product listing with its inventory record. Prices are minor currency units."""
    id: uuid.UUID
    seller_id: uuid.UUID
    name: str
    description: Optional[str] = None
    status: str
    retail_price: int
    retail_unit: str
    retail_min_quantity: int
    bulk_tiers: List[BulkTier] = Field(default_factory=list, validation_alias="bulk_tier_list")
    available_stock: int
    low_stock_threshold: int
    is_low_stock: bool
    unit: str
    order_count: int
    total_sold: int
    expiry_date: Optional[date] = None
    pickup_address: Optional[str] = None
    pickup_city: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class StockRestock(BaseCreateSchema):
    """Seller restock request."""
    quantity: int = Field(..., ge=1, le=1_000_000)
