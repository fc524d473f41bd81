from typing import Optional
import uuid
from math import ceil

from fastapi import APIRouter, status, Query

from app.api.deps import DB, CurrentUser
from app.models.order import Order, OrderStatus
from app.models.user import User
from app.schemas.base import ApiResponse, PaginatedResponse
from app.schemas.order import (
    OrderCreate,
    OrderResponse,
    OrderDetailResponse,
    CompletePickupRequest,
    CancelOrderRequest,
    PaymentSuccessRequest,
)
from app.services.order_service import OrderService


router = APIRouter(tags=["Orders"])


def _build_order_response(order: Order, viewer: User) -> OrderResponse:
    """Build OrderResponse; only the buyer and admins see the pickup code."""
    response = OrderResponse.model_validate(order)
    if not (viewer.is_admin or viewer.id == order.buyer_id):
        response.pickup_code = None
    return response


def _build_order_detail_response(order: Order, viewer: User) -> OrderDetailResponse:
    response = OrderDetailResponse.model_validate(order)
    if not (viewer.is_admin or viewer.id == order.buyer_id):
        response.pickup_code = None
    return response


def _paginate(orders, total: int, page: int, size: int, viewer: User) -> PaginatedResponse[OrderResponse]:
    return PaginatedResponse[OrderResponse](
        items=[_build_order_response(order, viewer) for order in orders],
        total=total,
        page=page,
        size=size,
        pages=ceil(total / size) if total > 0 else 0,
    )


@router.post(
    "",
    response_model=ApiResponse[OrderResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_order(data: OrderCreate, db: DB, current_user: CurrentUser):
    """Place a pickup order; stock is reserved immediately."""
    order = await OrderService(db).create_order(current_user, data)
    return ApiResponse(
        message="Order created successfully",
        data=_build_order_response(order, current_user),
    )


@router.get("", response_model=ApiResponse[PaginatedResponse[OrderResponse]])
async def list_my_orders(
    db: DB,
    current_user: CurrentUser,
    page: int = Query(1, ge=1),
    size: int = Query(10, ge=1, le=50),
    order_status: Optional[OrderStatus] = Query(None, alias="status"),
):
    """List the caller's orders as a buyer, newest first."""
    orders, total = await OrderService(db).list_buyer_orders(
        current_user,
        status=order_status.value if order_status else None,
        page=page,
        size=size,
    )
    return ApiResponse(data=_paginate(orders, total, page, size, current_user))


@router.get("/seller", response_model=ApiResponse[PaginatedResponse[OrderResponse]])
async def list_seller_orders(
    db: DB,
    current_user: CurrentUser,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=50),
    order_status: Optional[OrderStatus] = Query(None, alias="status"),
    seller_id: Optional[uuid.UUID] = Query(None, description="Admin only"),
):
    """Seller view of incoming orders."""
    orders, total = await OrderService(db).list_seller_orders(
        current_user,
        status=order_status.value if order_status else None,
        seller_id=seller_id,
        page=page,
        size=size,
    )
    return ApiResponse(data=_paginate(orders, total, page, size, current_user))


@router.get("/{order_id}", response_model=ApiResponse[OrderDetailResponse])
async def get_order(order_id: uuid.UUID, db: DB, current_user: CurrentUser):
    order = await OrderService(db).get_order_for_user(order_id, current_user)
    return ApiResponse(data=_build_order_detail_response(order, current_user))


@router.patch("/{order_id}/confirm", response_model=ApiResponse[OrderResponse])
async def confirm_order(order_id: uuid.UUID, db: DB, current_user: CurrentUser):
    order = await OrderService(db).confirm_order(order_id, current_user)
    return ApiResponse(
        message="Order confirmed successfully",
        data=_build_order_response(order, current_user),
    )


@router.patch("/{order_id}/ready", response_model=ApiResponse[OrderResponse])
async def mark_order_ready(order_id: uuid.UUID, db: DB, current_user: CurrentUser):
    order = await OrderService(db).mark_ready(order_id, current_user)
    return ApiResponse(
        message="Order marked as ready for pickup",
        data=_build_order_response(order, current_user),
    )


@router.patch("/{order_id}/complete", response_model=ApiResponse[OrderResponse])
async def complete_pickup(
    order_id: uuid.UUID,
    data: CompletePickupRequest,
    db: DB,
    current_user: CurrentUser,
):
    """Seller verifies the buyer's pickup code and hands the order over."""
    order = await OrderService(db).complete_pickup(order_id, data.pickup_code, current_user)
    return ApiResponse(
        message="Order completed successfully",
        data=_build_order_response(order, current_user),
    )


@router.patch("/{order_id}/cancel", response_model=ApiResponse[OrderResponse])
async def cancel_order(
    order_id: uuid.UUID,
    db: DB,
    current_user: CurrentUser,
    data: Optional[CancelOrderRequest] = None,
):
    order = await OrderService(db).cancel_order(
        order_id,
        current_user,
        reason=data.reason if data else None,
    )
    return ApiResponse(
        message="Order cancelled successfully",
        data=_build_order_response(order, current_user),
    )


@router.post("/{order_id}/payment-success", response_model=ApiResponse[OrderResponse])
async def mark_payment_success(
    order_id: uuid.UUID,
    data: PaymentSuccessRequest,
    db: DB,
    current_user: CurrentUser,
):
    """Payment callback: records the reference and confirms a pending order."""
    order = await OrderService(db).mark_paid(order_id, data.payment_reference, current_user)
    return ApiResponse(
        message="Payment recorded successfully",
        data=_build_order_response(order, current_user),
    )
