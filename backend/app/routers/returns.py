from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from .. import returns
from ..actors import Actor
from ..deps import require_permission
from ..validation import NonNegativeAmount, Notes, PositiveQuantity, Reference

router = APIRouter(prefix="/returns", tags=["returns"])


class ReturnLineIn(BaseModel):
    product_id: str
    quantity: PositiveQuantity
    unit_price: NonNegativeAmount
    location_id: Optional[str] = None
    restockable: bool = True
    condition: Optional[str] = None


class ReturnIn(BaseModel):
    return_type: str
    lines: List[ReturnLineIn] = Field(min_length=1)
    customer_id: Optional[str] = None
    reason: Notes = None
    restock_fee: NonNegativeAmount = Decimal("0")
    reference_type: Reference = None
    reference_id: Reference = None
    notes: Notes = None


class ReturnTransitionIn(BaseModel):
    # APPROVE, PROCESS, COMPLETE or REJECT
    action: str


@router.post("")
def create_return(data: ReturnIn, actor: Actor = Depends(require_permission("inventory:write"))):
    return returns.create_product_return(
        data.return_type,
        data.lines,
        actor,
        customer_id=data.customer_id,
        reason=data.reason,
        restock_fee=data.restock_fee,
        reference_type=data.reference_type,
        reference_id=data.reference_id,
        notes=data.notes,
    )


@router.post("/{return_id}/transition")
def transition_return(return_id: str, data: ReturnTransitionIn, actor: Actor = Depends(require_permission("inventory:write"))):
    return returns.transition_product_return(return_id, data.action, actor)
