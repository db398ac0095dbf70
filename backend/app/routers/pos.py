from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from .. import pos_orders
from ..actors import Actor
from ..db import get_conn
from ..deps import require_permission
from ..errors import NotFoundError
from ..validation import NonNegativeAmount, Percentage, PaymentMethod, PositiveQuantity, parse_uuid_required

router = APIRouter(prefix="/pos", tags=["pos"])


class PriceCheckIn(BaseModel):
    product_id: str
    unit_price: Optional[NonNegativeAmount] = None


class OrderLineIn(BaseModel):
    product_id: str
    quantity: PositiveQuantity
    unit_price: Optional[NonNegativeAmount] = None


class PosOrderIn(BaseModel):
    customer_id: Optional[str] = None
    lines: List[OrderLineIn] = Field(min_length=1)
    tax_pct: Percentage = Decimal("0")
    discount_pct: Percentage = Decimal("0")


class CheckoutIn(BaseModel):
    location_id: str
    payment_method: PaymentMethod
    # Defaults to the order total.
    amount_paid: Optional[NonNegativeAmount] = None


@router.post("/price-check")
def price_check(data: PriceCheckIn, actor: Actor = Depends(require_permission("pos:write"))):
    product_id = parse_uuid_required(data.product_id, "product_id")
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT id, price FROM products WHERE id = %s", (product_id,))
            row = cur.fetchone()
    if not row:
        raise NotFoundError("product", product_id)
    out = pos_orders.price_order_line(row["price"], data.unit_price, actor.normalized_role)
    return {"product_id": product_id, "catalog_price": row["price"], **out}


@router.post("/orders")
def create_order(data: PosOrderIn, actor: Actor = Depends(require_permission("pos:write"))):
    return pos_orders.create_pos_order(data.customer_id, data.lines, data.tax_pct, data.discount_pct, actor)


@router.post("/orders/{order_id}/checkout")
def checkout_order(order_id: str, data: CheckoutIn, actor: Actor = Depends(require_permission("pos:write"))):
    return pos_orders.checkout_pos_order(order_id, data.location_id, data.payment_method, data.amount_paid, actor)
