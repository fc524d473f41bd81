# Services module
from app.services.inventory_ledger import InventoryLedger, StockDirection
from app.services.order_service import OrderService
from app.services.email_service import EmailService

__all__ = [
    "InventoryLedger",
    "StockDirection",
    "OrderService",
    "EmailService",
]
