"""
Listing Jobs

Daily purge of surplus-food listings whose expiry date has passed.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import select, update, delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.order import OrderItem
from app.models.product import Product

logger = logging.getLogger(__name__)


@dataclass
class PurgeReport:
    scanned: int = 0
    deleted: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


async def purge_expired_listings(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    today: Optional[date] = None,
) -> PurgeReport:
    """
    Delete listings with an expiry date before tomorrow (UTC).

    Order items that point at a purged listing keep their product name
    snapshot; only the link is cleared.
    """
    from app.database import async_session_factory

    session_factory = session_factory or async_session_factory
    start_time = datetime.now(timezone.utc)
    today = today or start_time.date()
    cutoff = today + timedelta(days=1)
    report = PurgeReport()

    logger.info(f"Starting expired listing purge (expiry before {cutoff.isoformat()})...")

    async with session_factory() as session:
        result = await session.execute(
            select(Product.id, Product.name).where(Product.expiry_date < cutoff)
        )
        candidates = result.all()

    report.scanned = len(candidates)

    for product_id, name in candidates:
        try:
            async with session_factory() as session:
                await session.execute(
                    update(OrderItem)
                    .where(OrderItem.product_id == product_id)
                    .values(product_id=None)
                )
                await session.execute(delete(Product).where(Product.id == product_id))
                await session.commit()
            report.deleted.append(str(product_id))
        except Exception as e:
            report.failed.append(str(product_id))
            logger.error(f"Error deleting expired listing {name} ({product_id}): {e}")

    elapsed = (datetime.now(timezone.utc) - start_time).total_seconds()
    logger.info(
        f"Expired listing purge completed in {elapsed:.2f}s. "
        f"Deleted {len(report.deleted)} of {report.scanned} listings"
    )
    return report
