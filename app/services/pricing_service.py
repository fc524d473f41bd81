"""Pricing for pickup orders.

Resolves the unit price and unit label for a product at a given quantity:
- retail orders always pay the retail price
- bulk orders pay the tier with the highest min_quantity that the quantity
  reaches; below every tier they fall back to retail

Example:
- Retail: 1000 per kg
- Tiers: [{min 20: 900}, {min 50: 800}]
- Bulk qty 25 -> 900, qty 60 -> 800, qty 5 -> 1000 (retail)
"""
from dataclasses import dataclass
from typing import Optional

from app.models.order import OrderType
from app.models.product import Product


@dataclass
class PriceQuote:
    """Unit price (minor units) and the unit label it is quoted in."""
    unit_price: int
    unit: str
    tier_name: Optional[str] = None

    def subtotal(self, quantity: int) -> int:
        return self.unit_price * quantity


def select_bulk_tier(product: Product, quantity: int) -> Optional[dict]:
    """Highest-minimum tier the quantity qualifies for, or None."""
    qualifying = [
        tier for tier in product.bulk_tier_list
        if int(tier.get("min_quantity", 0)) <= quantity
    ]
    if not qualifying:
        return None
    return max(qualifying, key=lambda tier: int(tier.get("min_quantity", 0)))


def resolve_unit_price(product: Product, quantity: int, order_type: str) -> PriceQuote:
    retail = PriceQuote(unit_price=product.retail_price, unit=product.retail_unit)
    if order_type != OrderType.BULK.value:
        return retail

    tier = select_bulk_tier(product, quantity)
    if tier is None:
        return retail
    return PriceQuote(
        unit_price=int(tier["price"]),
        unit=tier.get("unit") or product.retail_unit,
        tier_name=tier.get("name"),
    )


def min_quantity_for(product: Product, order_type: str) -> int:
    """
    Minimum order quantity for the order type.

    Bulk uses the first tier as listed (0 without tiers), which is not
    necessarily the smallest tier.
    """
    if order_type == OrderType.BULK.value:
        tiers = product.bulk_tier_list
        return int(tiers[0].get("min_quantity", 0)) if tiers else 0
    return product.retail_min_quantity or 0
