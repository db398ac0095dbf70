from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from .. import ledger
from ..actors import Actor
from ..db import get_conn
from ..deps import require_permission
from ..journal import list_stock_movements
from ..validation import Notes, PositiveQuantity, Reference, SignedQuantity, parse_uuid_optional

router = APIRouter(prefix="/inventory", tags=["inventory"])


class StockAdjustIn(BaseModel):
    location_id: str
    product_id: str
    quantity_delta: SignedQuantity
    reason: Notes = None
    reference: Reference = None
    # Corrections may drive a location below zero (e.g. after a miscount).
    correction: bool = False


class StockTransferIn(BaseModel):
    from_location_id: str
    to_location_id: str
    product_id: str
    quantity: PositiveQuantity
    reason: Notes = None
    reference: Reference = None


@router.post("/adjust")
def stock_adjust(data: StockAdjustIn, actor: Actor = Depends(require_permission("inventory:write"))):
    return ledger.adjust_stock(
        data.location_id,
        data.product_id,
        data.quantity_delta,
        data.reason,
        data.reference,
        actor,
        correction=data.correction,
    )


@router.post("/transfer")
def stock_transfer(data: StockTransferIn, actor: Actor = Depends(require_permission("inventory:write"))):
    return ledger.transfer_stock(
        data.from_location_id,
        data.to_location_id,
        data.product_id,
        data.quantity,
        data.reason,
        actor,
        reference=data.reference,
    )


@router.get("/movements")
def list_movements(
    product_id: Optional[str] = None,
    location_id: Optional[str] = None,
    limit: int = 200,
    _actor: Actor = Depends(require_permission("inventory:read")),
):
    if limit <= 0 or limit > 1000:
        raise HTTPException(status_code=400, detail="limit must be between 1 and 1000")
    product_id = parse_uuid_optional(product_id, "product_id")
    location_id = parse_uuid_optional(location_id, "location_id")
    with get_conn() as conn:
        with conn.cursor() as cur:
            return {"movements": list_stock_movements(cur, product_id=product_id, location_id=location_id, limit=limit)}
