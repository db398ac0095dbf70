from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from .. import ledger
from ..actors import Actor
from ..db import get_conn
from ..deps import require_permission
from ..journal import list_payments as _list_payments
from ..validation import Notes, PaymentMethod, PositiveAmount, Reference, parse_uuid_required

router = APIRouter(prefix="/payments", tags=["payments"])


class PaymentIn(BaseModel):
    invoice_id: str
    amount: PositiveAmount
    method: PaymentMethod
    reference: Reference = None
    payment_date: Optional[date] = None
    notes: Notes = None


@router.post("")
def apply_payment(data: PaymentIn, actor: Actor = Depends(require_permission("payments:write"))):
    return ledger.apply_payment(
        data.invoice_id,
        data.amount,
        data.method,
        data.reference,
        actor,
        payment_date=data.payment_date,
        notes=data.notes,
    )


@router.get("")
def list_payments(invoice_id: str, limit: int = 200, _actor: Actor = Depends(require_permission("payments:read"))):
    if limit <= 0 or limit > 1000:
        raise HTTPException(status_code=400, detail="limit must be between 1 and 1000")
    with get_conn() as conn:
        with conn.cursor() as cur:
            return {"payments": _list_payments(cur, parse_uuid_required(invoice_id, "invoice_id"), limit)}
