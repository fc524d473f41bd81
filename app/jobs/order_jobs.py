"""
Order Processing Jobs

Background jobs for managing order-related tasks:
- Expiry sweep: cancel orders nobody completed in time and return their stock
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.core.exceptions import InvalidStateTransition
from app.models.order import Order, TERMINAL_STATUSES

logger = logging.getLogger(__name__)


@dataclass
class ReapReport:
    """Outcome of one expiry sweep."""
    scanned: int = 0
    cancelled: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


async def reap_expired_orders(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    now: Optional[datetime] = None,
    expiry_hours: Optional[int] = None,
) -> ReapReport:
    """
    Cancel unfinished orders older than the expiry window.

    This job runs hourly to:
    1. Find orders created before now - expiry_hours that are not completed/cancelled
    2. Put every item's quantity back on its listing
    3. Move the order to cancelled with a system reason

    Each order gets its own session and transaction; one bad order is logged
    and skipped, it never stops the rest of the batch.
    """
    from app.database import async_session_factory
    from app.services.order_service import OrderService

    session_factory = session_factory or async_session_factory
    expiry_hours = expiry_hours or settings.ORDER_EXPIRY_HOURS
    start_time = datetime.now(timezone.utc)
    now = now or start_time
    cutoff = now - timedelta(hours=expiry_hours)
    report = ReapReport()

    logger.info(f"Starting expired order sweep (cutoff {cutoff.isoformat()})...")

    async with session_factory() as session:
        result = await session.execute(
            select(Order.id, Order.order_number)
            .where(
                Order.created_at < cutoff,
                Order.status.not_in(TERMINAL_STATUSES),
            )
            .order_by(Order.created_at.asc())
        )
        candidates = result.all()

    report.scanned = len(candidates)

    for order_id, order_number in candidates:
        try:
            async with session_factory() as session:
                service = OrderService(session, notify=False)
                order = await service.get_order(order_id)
                if not order.is_expired(expiry_hours, now):
                    # Finished by a user between the scan and now
                    report.skipped.append(order_number)
                    continue
                await service.expire_order(order, expiry_hours)
            report.cancelled.append(order_number)
            logger.info(f"Order {order_number} expired and cancelled")
        except InvalidStateTransition as e:
            # Cancelled or completed while the sweep was expiring it
            report.skipped.append(order_number)
            logger.info(f"Order {order_number} not expired: {e.message}")
        except Exception as e:
            report.failed.append(order_number)
            logger.error(f"Error expiring order {order_number}: {e}")

    elapsed = (datetime.now(timezone.utc) - start_time).total_seconds()
    logger.info(
        f"Expired order sweep completed in {elapsed:.2f}s. "
        f"Scanned: {report.scanned}, Cancelled: {len(report.cancelled)}, "
        f"Skipped: {len(report.skipped)}, "
        f"Failed: {len(report.failed)}"
    )
    return report
