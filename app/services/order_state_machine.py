"""
Pickup Order State Machine

This module is the SINGLE SOURCE OF TRUTH for order status transitions.
All status changes go through the event functions below; each one checks its
guard, looks the move up in ORDER_TRANSITIONS and records a history row.

    pending ──confirm / payment_received──> confirmed
    pending | confirmed ──mark_ready (paid only)──> ready_for_pickup
    ready_for_pickup ──complete_pickup (code match)──> completed
    any non-terminal ──cancel / expire──> cancelled

Stock restoration on cancel is the caller's job (OrderService, reaper).
"""

import hmac
import uuid
from typing import Optional, List, Dict, Tuple
from datetime import datetime, timezone

from app.core.exceptions import ConflictError, InvalidStateTransition, ValidationError
from app.models.order import (
    Order,
    OrderStatus,
    OrderStatusHistory,
    PaymentStatus,
    TERMINAL_STATUSES,
)


DEFAULT_CANCEL_REASON = "No reason provided"
EXPIRY_CANCEL_REASON = "Order expired - not completed within {hours} hours"


# =============================================================================
# EVENTS
# =============================================================================

class OrderEvent:
    """Order events - use these instead of strings."""
    CONFIRM = "confirm"
    PAYMENT_RECEIVED = "payment_received"
    MARK_READY = "mark_ready"
    COMPLETE_PICKUP = "complete_pickup"
    CANCEL = "cancel"
    EXPIRE = "expire"


# =============================================================================
# TRANSITION RULES
# =============================================================================

_PENDING = OrderStatus.PENDING.value
_CONFIRMED = OrderStatus.CONFIRMED.value
_READY = OrderStatus.READY_FOR_PICKUP.value
_COMPLETED = OrderStatus.COMPLETED.value
_CANCELLED = OrderStatus.CANCELLED.value

# Format: (current_status, event) -> next_status
ORDER_TRANSITIONS: Dict[Tuple[str, str], str] = {
    (_PENDING, OrderEvent.CONFIRM): _CONFIRMED,
    (_PENDING, OrderEvent.PAYMENT_RECEIVED): _CONFIRMED,     # Payment auto-confirms
    (_CONFIRMED, OrderEvent.PAYMENT_RECEIVED): _CONFIRMED,
    (_PENDING, OrderEvent.MARK_READY): _READY,               # Confirm step may be skipped
    (_CONFIRMED, OrderEvent.MARK_READY): _READY,
    (_READY, OrderEvent.COMPLETE_PICKUP): _COMPLETED,
    (_PENDING, OrderEvent.CANCEL): _CANCELLED,
    (_CONFIRMED, OrderEvent.CANCEL): _CANCELLED,
    (_READY, OrderEvent.CANCEL): _CANCELLED,
    (_PENDING, OrderEvent.EXPIRE): _CANCELLED,
    (_CONFIRMED, OrderEvent.EXPIRE): _CANCELLED,
    (_READY, OrderEvent.EXPIRE): _CANCELLED,
}


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def can_transition(current_status: str, event: str) -> bool:
    """Check if an event is accepted in the current status."""
    return (current_status, event) in ORDER_TRANSITIONS


def get_allowed_events(current_status: str) -> List[str]:
    """Get the events accepted from the current status."""
    return [event for (status, event) in ORDER_TRANSITIONS if status == current_status]


def next_status(current_status: str, event: str) -> str:
    """
    Resolve the status an event leads to. Raises InvalidStateTransition if
    the table has no entry for (current_status, event).
    """
    target = ORDER_TRANSITIONS.get((current_status, event))
    if target is not None:
        return target

    if current_status in TERMINAL_STATUSES:
        raise InvalidStateTransition(
            f"Order is {current_status} and cannot be modified",
            order_status=current_status,
        )
    allowed = get_allowed_events(current_status)
    raise InvalidStateTransition(
        f"Cannot apply '{event}' to an order in '{current_status}' status. "
        f"Allowed events: {', '.join(allowed)}",
        order_status=current_status,
    )


def _apply(
    order: Order,
    event: str,
    actor_id: Optional[uuid.UUID] = None,
    notes: Optional[str] = None,
) -> str:
    from_status = order.status
    to_status = next_status(from_status, event)
    order.status = to_status
    order.status_history.append(
        OrderStatusHistory(
            from_status=from_status,
            to_status=to_status,
            event=event,
            changed_by=actor_id,
            notes=notes,
        )
    )
    return to_status


def _now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# EVENTS ON THE ORDER AGGREGATE
# =============================================================================

def confirm(order: Order, actor_id: Optional[uuid.UUID] = None) -> Order:
    if order.status != _PENDING:
        raise ConflictError("Only pending orders can be confirmed", order_status=order.status)
    _apply(order, OrderEvent.CONFIRM, actor_id)
    order.confirmed_at = _now()
    return order


def mark_ready_for_pickup(order: Order, actor_id: Optional[uuid.UUID] = None) -> Order:
    """Move to ready_for_pickup. Payment must be in at call time."""
    if order.status not in TERMINAL_STATUSES and not order.is_paid:
        raise InvalidStateTransition(
            "Order must be paid before marking ready for pickup",
            order_status=order.status,
        )
    _apply(order, OrderEvent.MARK_READY, actor_id)
    return order


def complete_pickup(
    order: Order,
    pickup_code: str,
    actor_id: Optional[uuid.UUID] = None,
) -> Order:
    """Hand the goods over. A wrong code leaves the order untouched."""
    supplied = str(pickup_code or "").strip()
    if not hmac.compare_digest(supplied.encode(), order.pickup_code.encode()):
        raise ValidationError("Invalid pickup code", order_status=order.status)
    if order.status != _READY:
        raise InvalidStateTransition(
            "Order must be ready for pickup before completing",
            order_status=order.status,
        )
    _apply(order, OrderEvent.COMPLETE_PICKUP, actor_id)
    order.picked_up_at = _now()
    return order


def cancel(
    order: Order,
    reason: Optional[str] = None,
    actor_id: Optional[uuid.UUID] = None,
    event: str = OrderEvent.CANCEL,
) -> Order:
    if order.status in TERMINAL_STATUSES:
        raise InvalidStateTransition(f"Order is already {order.status}", order_status=order.status)
    reason = (reason or "").strip() or DEFAULT_CANCEL_REASON
    _apply(order, event, actor_id, notes=reason)
    order.cancellation_reason = reason
    order.cancelled_at = _now()
    return order


def expire(order: Order, max_age_hours: int = 24) -> Order:
    """System cancellation used by the expiry sweep."""
    return cancel(order, EXPIRY_CANCEL_REASON.format(hours=max_age_hours), event=OrderEvent.EXPIRE)


def mark_paid(
    order: Order,
    payment_reference: str,
    actor_id: Optional[uuid.UUID] = None,
) -> Order:
    """Record a successful payment; a pending order advances to confirmed."""
    reference = (payment_reference or "").strip()
    if not reference:
        raise ValidationError("Payment reference is required", order_status=order.status)
    if order.is_paid:
        raise ConflictError("Order is already paid", order_status=order.status)

    from_status = order.status
    _apply(order, OrderEvent.PAYMENT_RECEIVED, actor_id, notes=f"Payment reference {reference}")
    order.payment_status = PaymentStatus.PAID.value
    order.payment_reference = reference
    order.paid_at = _now()
    if from_status == _PENDING:
        order.confirmed_at = order.paid_at
    return order
