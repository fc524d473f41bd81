"""
OrderService against a real (in-memory) database.

Stock is always re-read through the ledger so the assertions see what the
database holds, not what the identity map remembers.
"""

import re
import uuid

import pytest
from sqlalchemy import select

from app.core.exceptions import (
    AuthorizationError,
    ConflictError,
    InvalidStateTransition,
    NotFoundError,
    ValidationError,
)
from app.models.order import OrderStatusHistory, OrderType
from app.schemas.order import OrderCreate, OrderItemCreate
from app.services.order_service import (
    OrderService,
    PLACEHOLDER_PICKUP_LOCATION,
    generate_order_number,
    generate_pickup_code,
)
from app.services.inventory_ledger import InventoryLedger


def _cart(*lines, order_type=OrderType.RETAIL, **extra) -> OrderCreate:
    return OrderCreate(
        items=[OrderItemCreate(product_id=pid, quantity=qty) for pid, qty in lines],
        order_type=order_type,
        **extra,
    )


async def _history_events(session, order_id) -> list:
    result = await session.execute(
        select(OrderStatusHistory.event)
        .where(OrderStatusHistory.order_id == order_id)
        .order_by(OrderStatusHistory.created_at)
    )
    return list(result.scalars().all())


@pytest.fixture
def service(db_session):
    return OrderService(db_session, notify=False)


def test_order_number_format():
    number = generate_order_number()
    assert re.fullmatch(r"FR-[0-9A-Z]+-[0-9A-Z]{4}", number)


def test_pickup_code_is_four_digits():
    for _ in range(50):
        code = generate_pickup_code()
        assert re.fullmatch(r"[1-9][0-9]{3}", code)


class TestCreateOrder:

    async def test_reserves_stock_and_snapshots_prices(self, service, db_session, buyer, seller, make_product):
        product = await make_product(seller, available_stock=10, retail_price=1000)

        order = await service.create_order(buyer, _cart((product.id, 3), notes="Ring at the gate"))

        assert order.status == "pending"
        assert order.payment_status == "pending"
        assert order.total_amount == 3000
        assert order.seller_id == seller.id
        assert order.buyer_id == buyer.id
        assert order.notes == "Ring at the gate"
        assert order.pickup_location == {"address": "12 Allen Avenue", "city": "Ikeja"}
        assert re.fullmatch(r"\d{4}", order.pickup_code)
        assert len(order.items) == 1
        item = order.items[0]
        assert (item.quantity, item.unit_price, item.subtotal, item.unit) == (3, 1000, 3000, "kg")
        assert order.status_history[0].event == "create"

        stock = await InventoryLedger(db_session).get_product(product.id)
        assert stock.available_stock == 7
        assert stock.order_count == 1
        assert stock.total_sold == 3

    async def test_bulk_order_uses_tier_price(self, service, db_session, buyer, seller, make_product):
        product = await make_product(
            seller,
            available_stock=100,
            bulk_tiers=[
                {"name": "Crate", "price": 900, "unit": "crate", "min_quantity": 20},
                {"name": "Pallet", "price": 800, "unit": "pallet", "min_quantity": 50},
            ],
        )

        order = await service.create_order(buyer, _cart((product.id, 25), order_type=OrderType.BULK))

        assert order.order_type == "bulk"
        assert order.total_amount == 22500
        assert order.items[0].unit == "crate"

    async def test_duplicate_lines_are_merged(self, service, db_session, buyer, seller, make_product):
        product = await make_product(seller, available_stock=10)

        order = await service.create_order(buyer, _cart((product.id, 2), (product.id, 3)))

        assert len(order.items) == 1
        assert order.items[0].quantity == 5
        stock = await InventoryLedger(db_session).get_product(product.id)
        assert stock.available_stock == 5

    async def test_empty_cart_rejected(self, service, buyer):
        with pytest.raises(ValidationError, match="at least one item"):
            await service.create_order(buyer, OrderCreate(items=[]))

    async def test_unknown_product(self, service, buyer, seller, make_product):
        product = await make_product(seller)
        with pytest.raises(NotFoundError, match="One or more products not found"):
            await service.create_order(buyer, _cart((product.id, 1), (uuid.uuid4(), 1)))

    async def test_multi_seller_cart_changes_nothing(
        self, service, db_session, buyer, seller, other_seller, make_product
    ):
        first = await make_product(seller, available_stock=10)
        second = await make_product(other_seller, available_stock=10)
        first_id, second_id = first.id, second.id

        with pytest.raises(ValidationError, match="same restaurant"):
            await service.create_order(buyer, _cart((first_id, 1), (second_id, 1)))

        ledger = InventoryLedger(db_session)
        assert (await ledger.get_product(first_id)).available_stock == 10
        assert (await ledger.get_product(second_id)).available_stock == 10
        orders, total = await service.list_buyer_orders(buyer)
        assert total == 0

    async def test_insufficient_stock(self, service, db_session, buyer, seller, make_product):
        product = await make_product(seller, name="Moi Moi", available_stock=2)
        product_id = product.id

        with pytest.raises(ValidationError, match='Product "Moi Moi" cannot fulfill order'):
            await service.create_order(buyer, _cart((product_id, 3)))

        assert (await InventoryLedger(db_session).get_product(product_id)).available_stock == 2

    async def test_below_minimum_quantity(self, service, buyer, seller, make_product):
        product = await make_product(seller, retail_min_quantity=5)
        with pytest.raises(ValidationError, match="cannot fulfill"):
            await service.create_order(buyer, _cart((product.id, 2)))

    async def test_inactive_listing_refused(self, service, buyer, seller, make_product):
        product = await make_product(seller, status="inactive")
        with pytest.raises(ValidationError):
            await service.create_order(buyer, _cart((product.id, 1)))

    async def test_pickup_location_falls_back_to_listing(self, service, buyer, other_seller, make_product):
        product = await make_product(other_seller, pickup_address="3 Market Road", pickup_city="Yaba")
        order = await service.create_order(buyer, _cart((product.id, 1)))
        assert order.pickup_location == {"address": "3 Market Road", "city": "Yaba"}

    async def test_pickup_location_placeholder(self, service, buyer, other_seller, make_product):
        product = await make_product(other_seller)
        order = await service.create_order(buyer, _cart((product.id, 1)))
        assert order.pickup_location == PLACEHOLDER_PICKUP_LOCATION

    async def test_totals_survive_price_changes(self, service, db_session, buyer, seller, make_product):
        product = await make_product(seller, retail_price=1000)
        order = await service.create_order(buyer, _cart((product.id, 3)))

        product.retail_price = 5000
        await db_session.commit()

        fresh = await service.get_order(order.id)
        assert fresh.total_amount == 3000
        assert fresh.items[0].unit_price == 1000


class TestCancellation:

    async def test_cancel_restores_stock(self, service, db_session, buyer, seller, make_product):
        product = await make_product(seller, available_stock=10)
        order = await service.create_order(buyer, _cart((product.id, 3)))

        cancelled = await service.cancel_order(order.id, buyer)

        assert cancelled.status == "cancelled"
        assert cancelled.cancellation_reason == "No reason provided"
        stock = await InventoryLedger(db_session).get_product(product.id)
        assert stock.available_stock == 10
        assert stock.order_count == 0
        assert stock.total_sold == 0

    async def test_cancel_reactivates_sold_out_listing(self, service, db_session, buyer, seller, make_product):
        product = await make_product(seller, available_stock=3)
        order = await service.create_order(buyer, _cart((product.id, 3)))
        ledger = InventoryLedger(db_session)
        assert (await ledger.get_product(product.id)).status == "out_of_stock"

        await service.cancel_order(order.id, seller, reason="Kitchen closed early")

        stock = await ledger.get_product(product.id)
        assert stock.available_stock == 3
        assert stock.status == "active"

    async def test_second_cancel_does_not_restore_twice(self, service, db_session, buyer, seller, make_product):
        product = await make_product(seller, available_stock=10)
        product_id = product.id
        order = await service.create_order(buyer, _cart((product_id, 4)))
        await service.cancel_order(order.id, buyer)

        with pytest.raises(InvalidStateTransition, match="already cancelled"):
            await service.cancel_order(order.id, buyer)

        assert (await InventoryLedger(db_session).get_product(product_id)).available_stock == 10

    async def test_stranger_cannot_cancel(self, service, buyer, other_buyer, seller, make_product):
        product = await make_product(seller)
        order = await service.create_order(buyer, _cart((product.id, 1)))
        with pytest.raises(AuthorizationError):
            await service.cancel_order(order.id, other_buyer)

    async def test_completed_order_cannot_cancel(self, service, buyer, seller, make_product):
        product = await make_product(seller)
        order = await service.create_order(buyer, _cart((product.id, 1)))
        await service.mark_paid(order.id, "PAY-1", buyer)
        await service.mark_ready(order.id, seller)
        await service.complete_pickup(order.id, order.pickup_code, seller)

        with pytest.raises(InvalidStateTransition, match="already completed"):
            await service.cancel_order(order.id, buyer)


class TestSellerFlow:

    async def test_full_pickup_flow(self, service, buyer, seller, make_product):
        product = await make_product(seller)
        order = await service.create_order(buyer, _cart((product.id, 2)))
        code = order.pickup_code

        await service.confirm_order(order.id, seller)
        paid = await service.mark_paid(order.id, "PAY-77", buyer)
        assert paid.status == "confirmed"
        assert paid.payment_status == "paid"

        ready = await service.mark_ready(order.id, seller)
        assert ready.status == "ready_for_pickup"

        wrong = "0000" if code != "0000" else "1111"
        with pytest.raises(ValidationError, match="Invalid pickup code"):
            await service.complete_pickup(order.id, wrong, seller)
        assert (await service.get_order(order.id)).status == "ready_for_pickup"

        done = await service.complete_pickup(order.id, code, seller)
        assert done.status == "completed"
        assert done.picked_up_at is not None
        events = [entry.event for entry in done.status_history]
        assert events == ["create", "confirm", "payment_received", "mark_ready", "complete_pickup"]

    async def test_payment_confirms_pending_order(self, service, buyer, seller, make_product):
        product = await make_product(seller)
        order = await service.create_order(buyer, _cart((product.id, 1)))

        paid = await service.mark_paid(order.id, "PAY-9", buyer)

        assert paid.status == "confirmed"
        assert paid.confirmed_at is not None

    async def test_second_payment_refused(self, service, buyer, seller, make_product):
        product = await make_product(seller)
        order = await service.create_order(buyer, _cart((product.id, 1)))
        first = await service.mark_paid(order.id, "PAY-1", buyer)
        paid_at = first.paid_at

        with pytest.raises(ConflictError, match="already paid"):
            await service.mark_paid(order.id, "PAY-2", buyer)

        fresh = await service.get_order(order.id)
        assert fresh.payment_reference == "PAY-1"
        assert fresh.paid_at == paid_at

    async def test_ready_requires_payment(self, service, buyer, seller, make_product):
        product = await make_product(seller)
        order = await service.create_order(buyer, _cart((product.id, 1)))
        with pytest.raises(InvalidStateTransition, match="must be paid"):
            await service.mark_ready(order.id, seller)

    async def test_confirm_twice(self, service, buyer, seller, make_product):
        product = await make_product(seller)
        order = await service.create_order(buyer, _cart((product.id, 1)))
        await service.confirm_order(order.id, seller)
        with pytest.raises(ConflictError, match="Only pending orders"):
            await service.confirm_order(order.id, seller)

    async def test_other_seller_cannot_act(self, service, buyer, seller, other_seller, make_product):
        product = await make_product(seller)
        order = await service.create_order(buyer, _cart((product.id, 1)))
        with pytest.raises(AuthorizationError, match="Not authorized to confirm"):
            await service.confirm_order(order.id, other_seller)
        with pytest.raises(AuthorizationError, match="Not authorized to update"):
            await service.mark_ready(order.id, buyer)

    async def test_admin_can_act_for_seller(self, service, buyer, seller, admin, make_product):
        product = await make_product(seller)
        order = await service.create_order(buyer, _cart((product.id, 1)))
        confirmed = await service.confirm_order(order.id, admin)
        assert confirmed.status == "confirmed"
        assert confirmed.status_history[-1].changed_by == admin.id


class TestConcurrentTransitions:
    """Two sessions acting on the same order, one of them with a stale read."""

    @staticmethod
    def _serve_stale_first(service, monkeypatch, stale):
        """Make the service's next get_order return the copy it loaded earlier."""
        reads = iter([stale])
        fresh_read = service.get_order

        async def get_order(order_id):
            return next(reads, None) or await fresh_read(order_id)

        monkeypatch.setattr(service, "get_order", get_order)

    async def test_expiry_after_user_cancel_restores_once(
        self, session_factory, db_session, buyer, seller, make_product
    ):
        product = await make_product(seller, available_stock=10)
        product_id = product.id
        order = await OrderService(db_session, notify=False).create_order(buyer, _cart((product_id, 3)))
        order_id = order.id

        async with session_factory() as sweep_session, session_factory() as user_session:
            sweep = OrderService(sweep_session, notify=False)
            stale = await sweep.get_order(order_id)
            await OrderService(user_session, notify=False).cancel_order(order_id, buyer)

            with pytest.raises(InvalidStateTransition, match="already cancelled"):
                await sweep.expire_order(stale, 24)

        stock = await InventoryLedger(db_session).get_product(product_id)
        assert stock.available_stock == 10
        assert stock.order_count == 0
        assert stock.total_sold == 0
        fresh = await OrderService(db_session).get_order(order_id)
        assert fresh.cancellation_reason == "No reason provided"
        assert await _history_events(db_session, order_id) == ["create", "cancel"]

    async def test_double_cancel_restores_once(
        self, session_factory, db_session, buyer, seller, make_product, monkeypatch
    ):
        product = await make_product(seller, available_stock=10)
        product_id = product.id
        order = await OrderService(db_session, notify=False).create_order(buyer, _cart((product_id, 4)))
        order_id = order.id

        async with session_factory() as first_session, session_factory() as second_session:
            second = OrderService(second_session, notify=False)
            self._serve_stale_first(second, monkeypatch, await second.get_order(order_id))

            await OrderService(first_session, notify=False).cancel_order(order_id, buyer, reason="Buyer")
            with pytest.raises(InvalidStateTransition, match="already cancelled"):
                await second.cancel_order(order_id, seller, reason="Seller")

        assert (await InventoryLedger(db_session).get_product(product_id)).available_stock == 10
        fresh = await OrderService(db_session).get_order(order_id)
        assert fresh.cancellation_reason == "Buyer"

    async def test_second_payment_callback_loses(
        self, session_factory, db_session, buyer, seller, make_product, monkeypatch
    ):
        product = await make_product(seller)
        order = await OrderService(db_session, notify=False).create_order(buyer, _cart((product.id, 1)))
        order_id = order.id

        async with session_factory() as first_session, session_factory() as second_session:
            second = OrderService(second_session, notify=False)
            self._serve_stale_first(second, monkeypatch, await second.get_order(order_id))

            first = await OrderService(first_session, notify=False).mark_paid(order_id, "PAY-A", buyer)
            paid_at = first.paid_at
            with pytest.raises(ConflictError, match="already paid"):
                await second.mark_paid(order_id, "PAY-B", buyer)

        fresh = await OrderService(db_session).get_order(order_id)
        assert fresh.payment_reference == "PAY-A"
        assert fresh.paid_at == paid_at
        events = await _history_events(db_session, order_id)
        assert events.count("payment_received") == 1


class TestListing:

    async def test_buyer_sees_only_own_orders(self, service, buyer, other_buyer, seller, make_product):
        product = await make_product(seller, available_stock=20)
        await service.create_order(buyer, _cart((product.id, 1)))
        await service.create_order(buyer, _cart((product.id, 1)))
        await service.create_order(other_buyer, _cart((product.id, 1)))

        orders, total = await service.list_buyer_orders(buyer)
        assert total == 2
        assert all(order.buyer_id == buyer.id for order in orders)

        page, total = await service.list_buyer_orders(buyer, page=2, size=1)
        assert total == 2
        assert len(page) == 1

    async def test_status_filter(self, service, buyer, seller, make_product):
        product = await make_product(seller, available_stock=20)
        keep = await service.create_order(buyer, _cart((product.id, 1)))
        drop = await service.create_order(buyer, _cart((product.id, 1)))
        await service.cancel_order(drop.id, buyer)

        orders, total = await service.list_buyer_orders(buyer, status="pending")
        assert total == 1
        assert orders[0].id == keep.id

    async def test_seller_listing(self, service, buyer, seller, other_seller, admin, make_product):
        mine = await make_product(seller)
        theirs = await make_product(other_seller)
        await service.create_order(buyer, _cart((mine.id, 1)))
        await service.create_order(buyer, _cart((theirs.id, 1)))

        orders, total = await service.list_seller_orders(seller)
        assert total == 1
        assert orders[0].seller_id == seller.id

        _, total = await service.list_seller_orders(admin)
        assert total == 2
        _, total = await service.list_seller_orders(admin, seller_id=other_seller.id)
        assert total == 1

        with pytest.raises(AuthorizationError, match="Only sellers"):
            await service.list_seller_orders(buyer)

    async def test_get_order_for_user(self, service, buyer, other_buyer, seller, make_product):
        product = await make_product(seller)
        order = await service.create_order(buyer, _cart((product.id, 1)))

        assert (await service.get_order_for_user(order.id, seller)).id == order.id
        with pytest.raises(AuthorizationError, match="Not authorized to view"):
            await service.get_order_for_user(order.id, other_buyer)
        with pytest.raises(NotFoundError):
            await service.get_order(uuid.uuid4())
