import uuid
import logging

from fastapi import APIRouter

from app.api.deps import DB, CurrentUser
from app.core.exceptions import AuthorizationError
from app.schemas.base import ApiResponse
from app.schemas.product import ProductResponse, StockRestock
from app.services.inventory_ledger import InventoryLedger


logger = logging.getLogger(__name__)

router = APIRouter(tags=["Products"])


@router.get("/{product_id}", response_model=ApiResponse[ProductResponse])
async def get_product(product_id: uuid.UUID, db: DB):
    """Get a listing with its current stock."""
    product = await InventoryLedger(db).get_product(product_id)
    return ApiResponse(data=ProductResponse.model_validate(product))


@router.patch("/{product_id}/stock", response_model=ApiResponse[ProductResponse])
async def restock_product(
    product_id: uuid.UUID,
    data: StockRestock,
    db: DB,
    current_user: CurrentUser,
):
    """Add stock to a listing. Owning seller or admin only."""
    ledger = InventoryLedger(db)
    product = await ledger.get_product(product_id)
    if not (current_user.is_admin or product.seller_id == current_user.id):
        raise AuthorizationError("Not authorized to update this product")

    product = await ledger.restock(product_id, data.quantity)
    await db.commit()
    return ApiResponse(
        message="Stock updated successfully",
        data=ProductResponse.model_validate(product),
    )
