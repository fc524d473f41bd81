from typing import Callable, Dict, List, Optional, Tuple
from datetime import datetime, timezone
import secrets
import uuid
import logging

from sqlalchemy import select, update, func, and_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError

from app.config import settings
from app.core.enum_utils import get_enum_value
from app.core.exceptions import (
    AppError,
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from app.models.order import Order, OrderItem, OrderStatus, OrderStatusHistory
from app.models.product import Product
from app.models.user import User
from app.schemas.order import OrderCreate
from app.services import order_state_machine as state_machine
from app.services.email_service import send_pickup_confirmation, send_payment_notification
from app.services.inventory_ledger import InventoryLedger, StockDirection, cannot_fulfill_message
from app.services.pricing_service import resolve_unit_price

logger = logging.getLogger(__name__)

_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"

# Used when neither the seller nor the listing carries an address
PLACEHOLDER_PICKUP_LOCATION = {"address": "Restaurant address", "city": "City"}


def _to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def generate_order_number(prefix: Optional[str] = None, now: Optional[datetime] = None) -> str:
    """Generate order number: FR-<base36 epoch millis>-<4 random base36 chars>"""
    prefix = prefix or settings.ORDER_NUMBER_PREFIX
    now = now or datetime.now(timezone.utc)
    millis = int(now.timestamp() * 1000)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(4))
    return f"{prefix}-{_to_base36(millis)}-{suffix}"


def generate_pickup_code() -> str:
    """4-digit numeric code, 1000-9999."""
    return str(secrets.randbelow(9000) + 1000)


class OrderService:
    """Pickup order lifecycle: creation, seller actions, payment and cancellation."""

    MAX_ORDER_NUMBER_ATTEMPTS = 5
    MAX_TRANSITION_ATTEMPTS = 3

    def __init__(self, db: AsyncSession, notify: bool = True):
        self.db = db
        self.ledger = InventoryLedger(db)
        self.notify = notify

    # ==================== ORDER NUMBER GENERATION ====================

    async def _unique_order_number(self) -> str:
        for _ in range(self.MAX_ORDER_NUMBER_ATTEMPTS):
            candidate = generate_order_number()
            exists = await self.db.execute(
                select(Order.id).where(Order.order_number == candidate)
            )
            if exists.scalar_one_or_none() is None:
                return candidate
            logger.warning(f"Order number collision on {candidate}, regenerating")
        raise ConflictError("Could not allocate an order number, please retry")

    # ==================== READS ====================

    async def get_order(self, order_id: uuid.UUID) -> Order:
        result = await self.db.execute(
            select(Order)
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        order = result.scalar_one_or_none()
        if not order:
            raise NotFoundError("Order not found")
        return order

    async def get_order_for_user(self, order_id: uuid.UUID, user: User) -> Order:
        """Get an order visible to its buyer, its seller or an admin."""
        order = await self.get_order(order_id)
        if not self._is_party(order, user):
            raise AuthorizationError("Not authorized to view this order")
        return order

    async def _list_orders(
        self,
        filters: list,
        page: int,
        size: int,
    ) -> Tuple[List[Order], int]:
        count_stmt = select(func.count(Order.id))
        stmt = select(Order)
        if filters:
            count_stmt = count_stmt.where(and_(*filters))
            stmt = stmt.where(and_(*filters))

        total = (await self.db.execute(count_stmt)).scalar() or 0

        stmt = stmt.order_by(Order.created_at.desc()).offset((page - 1) * size).limit(size)
        result = await self.db.execute(stmt)
        return list(result.scalars().unique().all()), total

    async def list_buyer_orders(
        self,
        buyer: User,
        status: Optional[str] = None,
        page: int = 1,
        size: int = 10,
    ) -> Tuple[List[Order], int]:
        """Get the buyer's orders, newest first."""
        filters = [Order.buyer_id == buyer.id]
        if status:
            filters.append(Order.status == status)
        return await self._list_orders(filters, page, size)

    async def list_seller_orders(
        self,
        user: User,
        status: Optional[str] = None,
        seller_id: Optional[uuid.UUID] = None,
        page: int = 1,
        size: int = 20,
    ) -> Tuple[List[Order], int]:
        """
        Get orders placed with a seller.

        Sellers always see their own orders. Admins may pass seller_id to look
        at one seller, or leave it out to see every order.
        """
        if not (user.is_seller or user.is_admin):
            raise AuthorizationError("Only sellers can access this endpoint")

        filters = []
        if user.is_admin:
            if seller_id:
                filters.append(Order.seller_id == seller_id)
        else:
            filters.append(Order.seller_id == user.id)
        if status:
            filters.append(Order.status == status)
        return await self._list_orders(filters, page, size)

    # ==================== CREATION ====================

    async def create_order(self, buyer: User, data: OrderCreate) -> Order:
        """
        Create a pickup order and reserve its stock.

        All checks run before anything is written. The order insert and every
        stock decrement share one transaction, so a failed reservation leaves
        no order and no partial decrements behind.
        """
        if not data.items:
            raise ValidationError("Order must have at least one item")

        # Same product twice in a cart counts as one line
        quantities: Dict[uuid.UUID, int] = {}
        for item in data.items:
            quantities[item.product_id] = quantities.get(item.product_id, 0) + item.quantity

        result = await self.db.execute(
            select(Product)
            .where(Product.id.in_(list(quantities.keys())))
            .execution_options(populate_existing=True)
        )
        products = {product.id: product for product in result.scalars().all()}
        if len(products) != len(quantities):
            raise NotFoundError("One or more products not found")

        seller_ids = {product.seller_id for product in products.values()}
        if len(seller_ids) > 1:
            raise ValidationError("All products must be from the same restaurant")
        seller_id = seller_ids.pop()

        order_type = get_enum_value(data.order_type)
        order_items: List[OrderItem] = []
        total_amount = 0
        for product_id, quantity in quantities.items():
            product = products[product_id]
            if not self.ledger.can_fulfill(product, quantity, order_type):
                raise ValidationError(cannot_fulfill_message(product))

            quote = resolve_unit_price(product, quantity, order_type)
            subtotal = quote.subtotal(quantity)
            total_amount += subtotal
            order_items.append(
                OrderItem(
                    product_id=product.id,
                    product_name=product.name,
                    quantity=quantity,
                    unit_price=quote.unit_price,
                    unit=quote.unit,
                    subtotal=subtotal,
                )
            )

        seller = await self.db.get(User, seller_id)
        if not seller:
            raise NotFoundError("Seller not found")
        first_product = next(iter(products.values()))
        pickup_location = (
            seller.pickup_location()
            or first_product.pickup_location()
            or dict(PLACEHOLDER_PICKUP_LOCATION)
        )

        order = Order(
            order_number=await self._unique_order_number(),
            buyer_id=buyer.id,
            seller=seller,
            order_type=order_type,
            total_amount=total_amount,
            status=OrderStatus.PENDING.value,
            pickup_code=generate_pickup_code(),
            pickup_location=pickup_location,
            scheduled_pickup_time=data.scheduled_pickup_time,
            notes=data.notes,
            items=order_items,
        )
        order.status_history.append(
            OrderStatusHistory(
                from_status=None,
                to_status=OrderStatus.PENDING.value,
                event="create",
                changed_by=buyer.id,
            )
        )

        try:
            self.db.add(order)
            await self.db.flush()
            for item in order_items:
                await self.ledger.adjust_stock(
                    item.product_id,
                    item.quantity,
                    StockDirection.DECREASE,
                    require_available=True,
                )
            await self.db.commit()
        except AppError:
            await self.db.rollback()
            raise
        except IntegrityError as e:
            await self.db.rollback()
            logger.error(f"Database integrity error creating order: {e}")
            raise ConflictError("Order creation failed, please retry")

        logger.info(
            f"Order {order.order_number} created for buyer {buyer.id}: "
            f"{len(order_items)} items, total {total_amount}"
        )

        if self.notify:
            await send_pickup_confirmation(
                order_number=order.order_number,
                customer_email=buyer.email,
                customer_name=buyer.full_name,
                total_amount=order.total_amount,
                items=[
                    {
                        "product_name": item.product_name,
                        "quantity": item.quantity,
                        "unit": item.unit,
                        "subtotal": item.subtotal,
                    }
                    for item in order.items
                ],
                pickup_code=order.pickup_code,
                pickup_location=order.pickup_location,
                scheduled_pickup_time=(
                    order.scheduled_pickup_time.isoformat() if order.scheduled_pickup_time else None
                ),
            )

        return order

    # ==================== SELLER ACTIONS ====================

    async def confirm_order(self, order_id: uuid.UUID, user: User) -> Order:
        order = await self.get_order(order_id)
        self._require_seller_or_admin(order, user, "confirm")
        actor_id = user.id
        order = await self._transition(order, lambda o: state_machine.confirm(o, actor_id=actor_id))
        logger.info(f"Order {order.order_number} confirmed by {actor_id}")
        return order

    async def mark_ready(self, order_id: uuid.UUID, user: User) -> Order:
        order = await self.get_order(order_id)
        self._require_seller_or_admin(order, user, "update")
        actor_id = user.id
        order = await self._transition(
            order, lambda o: state_machine.mark_ready_for_pickup(o, actor_id=actor_id)
        )
        logger.info(f"Order {order.order_number} ready for pickup")
        return order

    async def complete_pickup(self, order_id: uuid.UUID, pickup_code: str, user: User) -> Order:
        order = await self.get_order(order_id)
        self._require_seller_or_admin(order, user, "complete")
        actor_id = user.id
        order = await self._transition(
            order, lambda o: state_machine.complete_pickup(o, pickup_code, actor_id=actor_id)
        )
        logger.info(f"Order {order.order_number} picked up")
        return order

    # ==================== CANCELLATION ====================

    async def cancel_order(
        self,
        order_id: uuid.UUID,
        user: User,
        reason: Optional[str] = None,
    ) -> Order:
        """Cancel and put the reserved stock back, in one transaction."""
        order = await self.get_order(order_id)
        if not self._is_party(order, user):
            raise AuthorizationError("Not authorized to cancel this order")

        actor_id = user.id
        order = await self._transition(
            order,
            lambda o: state_machine.cancel(o, reason, actor_id=actor_id),
            restore_stock=True,
        )
        logger.info(f"Order {order.order_number} cancelled: {order.cancellation_reason}")
        return order

    async def expire_order(self, order: Order, max_age_hours: int) -> Order:
        """
        System cancellation for an order that outlived max_age_hours.

        Raises InvalidStateTransition if the order was finished or cancelled
        after it was loaded; its stock is then left as that change set it.
        """
        return await self._transition(
            order,
            lambda o: state_machine.expire(o, max_age_hours),
            restore_stock=True,
        )

    async def restore_stock(self, order: Order) -> int:
        """
        Return every item's quantity to its listing. Items whose listing has
        been purged are skipped. Returns the number of items restored.
        """
        restored = 0
        for item in order.items:
            if item.product_id is None:
                continue
            try:
                await self.ledger.adjust_stock(item.product_id, item.quantity, StockDirection.INCREASE)
            except NotFoundError:
                logger.warning(
                    f"Listing {item.product_id} for order {order.order_number} is gone, "
                    f"skipping restore of {item.quantity} {item.unit}"
                )
                continue
            restored += 1
        return restored

    # ==================== PAYMENT ====================

    async def mark_paid(self, order_id: uuid.UUID, payment_reference: str, user: User) -> Order:
        """Record the payment callback for an order."""
        order = await self.get_order(order_id)
        if not self._is_party(order, user):
            raise AuthorizationError("Not authorized to update this order")

        actor_id = user.id
        order = await self._transition(
            order, lambda o: state_machine.mark_paid(o, payment_reference, actor_id=actor_id)
        )
        logger.info(f"Payment {order.payment_reference} recorded for order {order.order_number}")

        if self.notify:
            await send_payment_notification(
                order_number=order.order_number,
                customer_email=order.buyer.email if order.buyer else None,
                customer_name=order.buyer.full_name if order.buyer else "Customer",
                amount=order.total_amount,
                payment_reference=order.payment_reference,
            )
        return order

    # ==================== STATUS WRITES ====================

    async def _claim(self, order_id: uuid.UUID, status: str, payment_status: str) -> bool:
        """
        Touch the order row only if it still has the given status and payment
        status. On PostgreSQL the UPDATE also holds the row lock until commit.
        """
        result = await self.db.execute(
            update(Order)
            .where(
                Order.id == order_id,
                Order.status == status,
                Order.payment_status == payment_status,
            )
            .values(updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def _transition(
        self,
        order: Order,
        apply: Callable[[Order], Order],
        restore_stock: bool = False,
    ) -> Order:
        """
        Apply a state-machine event and commit it.

        The event's guards run against the loaded order; the write then goes
        through only if the row still holds that state. When another request
        or the expiry sweep got there first, the session is rolled back and the
        event is re-checked against the reloaded order, where the guards
        refuse it. Stock is restored only by the write that wins.
        """
        order_id = order.id
        for _ in range(self.MAX_TRANSITION_ATTEMPTS):
            expected_status, expected_payment = order.status, order.payment_status
            apply(order)
            try:
                if await self._claim(order_id, expected_status, expected_payment):
                    if restore_stock:
                        await self.restore_stock(order)
                    await self.db.commit()
                    return order
                await self.db.rollback()
            except Exception:
                await self.db.rollback()
                raise
            logger.info(f"Order {order_id} changed concurrently, re-checking {expected_status} transition")
            order = await self.get_order(order_id)
        raise ConflictError("Order was updated by another request, please retry")

    # ==================== HELPER METHODS ====================

    @staticmethod
    def _is_party(order: Order, user: User) -> bool:
        return user.is_admin or user.id in (order.buyer_id, order.seller_id)

    @staticmethod
    def _require_seller_or_admin(order: Order, user: User, action: str) -> None:
        if user.is_admin or order.seller_id == user.id:
            return
        raise AuthorizationError(f"Not authorized to {action} this order")
