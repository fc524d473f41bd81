"""
Base Schema Classes for Pydantic Models

This module provides base classes that handle common patterns like UUID serialization,
ensuring consistency across all response schemas, plus the success envelope every
endpoint returns:

    {"success": true, "message": "...", "data": {...}}

RULE: All response schemas that use `from_attributes=True` MUST inherit from BaseResponseSchema.
"""

from datetime import datetime
from typing import Generic, Optional, TypeVar
from uuid import UUID
from pydantic import BaseModel, ConfigDict


T = TypeVar("T")


class BaseResponseSchema(BaseModel):
    """
    Base class for all response schemas that read from ORM models.

    Features:
    - Enables from_attributes for ORM compatibility
    - Consistent UUID and datetime serialization

    Usage:
        class ProductResponse(BaseResponseSchema):
            id: UUID
            name: str
    """
    model_config = ConfigDict(
        from_attributes=True,
        json_encoders={
            UUID: str,
            datetime: lambda v: v.isoformat() if v else None,
        },
        populate_by_name=True,
    )


class BaseCreateSchema(BaseModel):
    """
    Base class for create/input schemas.

    These schemas accept string UUIDs from the client and convert to UUID objects.
    """
    model_config = ConfigDict(
        # Allow extra fields to be ignored (forward compatibility)
        extra='ignore',
    )


class ApiResponse(BaseModel, Generic[T]):
    """Success envelope."""
    success: bool = True
    message: Optional[str] = None
    data: Optional[T] = None


class PaginatedResponse(BaseModel, Generic[T]):
    """Paginated list."""
    items: list[T]
    total: int
    page: int
    size: int
    pages: int
