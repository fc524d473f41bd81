"""
Enum Utilities for VARCHAR-based Status Fields

STORAGE STANDARD:
━━━━━━━━━━━━━━━━━
• Database: VARCHAR(30) - NOT a native database ENUM
• SQLAlchemy: String(30) with Mapped[str]
• Pydantic: Python Enum for API validation
• API Response: Use string directly (NO .value needed)
• Case: All enum values stored in lowercase snake_case

DATA FLOW:
━━━━━━━━━━
INPUT (API Request):
    Pydantic Enum → .value → String → Database
    Example: OrderType.BULK → "bulk" → VARCHAR

OUTPUT (API Response):
    Database → String → Return directly
    Example: VARCHAR "ready_for_pickup" → "ready_for_pickup"

CASE NORMALIZATION:
━━━━━━━━━━━━━━━━━━━
Clients sometimes send "BULK" or "Retail". Use create_lowercase_validator()
on schemas to accept any casing while storing lowercase.
"""

from enum import Enum
from typing import Any, Optional, Type, Set


def get_enum_value(value: Any) -> Optional[str]:
    """
    Safely get string value from an enum or string.

    Examples:
        >>> get_enum_value(OrderStatus.PENDING)  # Pydantic input
        'pending'
        >>> get_enum_value("pending")  # Database value
        'pending'
    """
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    return str(value)


def enum_values(enum_class: Type[Enum]) -> list:
    """Get all values from an enum class."""
    return [e.value for e in enum_class]


def enum_comment(enum_class: Type[Enum]) -> str:
    """
    Generate a comment string for a VARCHAR column.

    Examples:
        >>> enum_comment(PaymentStatus)
        'pending, paid, failed, refunded'
    """
    return ", ".join(enum_values(enum_class))


# =============================================================================
# CASE NORMALIZATION FOR PYDANTIC SCHEMAS
# =============================================================================

def normalize_to_lowercase(value: Any, valid_values: Set[str]) -> Any:
    """
    Normalize a string value to lowercase if it's a valid enum value.

    Returns the original value when it is not recognised so Pydantic
    raises its own validation error.
    """
    if value is None:
        return value
    if isinstance(value, str):
        lower_v = value.strip().lower()
        if lower_v in valid_values:
            return lower_v
    return value


def create_lowercase_validator(field_name: str, valid_values: Set[str]) -> classmethod:
    """
    Create a Pydantic field_validator that normalizes values to lowercase.

    Usage:
        class OrderCreate(BaseModel):
            order_type: OrderType

            _normalize_type = create_lowercase_validator('order_type', VALID_ORDER_TYPES)
    """
    from pydantic import field_validator

    @field_validator(field_name, mode='before')
    @classmethod
    def validate(cls, v):
        return normalize_to_lowercase(v, valid_values)

    return validate


# =============================================================================
# PRE-DEFINED VALID VALUE SETS
# =============================================================================

VALID_ORDER_TYPES = {"retail", "bulk"}
