"""
Append-only records of ledger mutations (payments, stock movements).

Rows are only ever inserted; the schema rejects UPDATE/DELETE on both tables.
Inserts always go through the caller's unit of work, so a journal row exists if
and only if the matching aggregate update committed.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from .actors import Actor
from .money import q_money, q_qty
from .status import PaymentStatus, derive_movement_type
from .unit_of_work import UnitOfWork


def new_transfer_reference(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"TR-{now:%Y%m%d}-{uuid.uuid4().hex[:6].upper()}"


def _clean_text(v: Optional[str], limit: int = 500) -> Optional[str]:
    v = (v or "").strip()
    return v[:limit] or None


def record_payment(
    uow: UnitOfWork,
    *,
    invoice_id: str,
    customer_id: Optional[str],
    amount: Decimal,
    method: str,
    reference: Optional[str],
    actor: Actor,
    payment_date: Optional[date] = None,
    notes: Optional[str] = None,
) -> dict:
    return uow.fetchone(
        """
        INSERT INTO payments
          (id, invoice_id, customer_id, amount, payment_date, method, reference, status, notes, created_by)
        VALUES
          (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING id, invoice_id, customer_id, amount, payment_date, method, reference, status, notes, created_by, created_at
        """,
        (
            invoice_id,
            customer_id,
            q_money(amount),
            payment_date or date.today(),
            method,
            _clean_text(reference, 120) or invoice_id,
            PaymentStatus.CONFIRMED.value,
            _clean_text(notes),
            actor.user_id,
        ),
    )


def record_stock_movement(
    uow: UnitOfWork,
    *,
    product_id: str,
    warehouse_id: str,
    location_id: str,
    quantity: Decimal,
    actor: Actor,
    transfer: bool = False,
    reference_type: Optional[str] = None,
    reference_id: Optional[str] = None,
    notes: Optional[str] = None,
) -> dict:
    """
    Append one movement. `quantity` is signed (positive inbound, negative outbound);
    the movement type is derived from the sign for transfer legs.
    """
    qty = q_qty(quantity)
    movement_type = derive_movement_type(qty, transfer=transfer)
    return uow.fetchone(
        """
        INSERT INTO stock_movements
          (id, product_id, warehouse_id, location_id, quantity, movement_type, reference_type, reference_id, notes, created_by)
        VALUES
          (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING id, product_id, warehouse_id, location_id, quantity, movement_type,
                  reference_type, reference_id, notes, created_by, created_at
        """,
        (
            product_id,
            warehouse_id,
            location_id,
            qty,
            movement_type.value,
            reference_type,
            _clean_text(reference_id, 120),
            _clean_text(notes),
            actor.user_id,
        ),
    )


def list_payments(cur, invoice_id: str, limit: int = 500) -> list:
    cur.execute(
        """
        SELECT id, invoice_id, customer_id, amount, payment_date, method, reference, status, notes, created_by, created_at
        FROM payments
        WHERE invoice_id = %s
        ORDER BY created_at DESC
        LIMIT %s
        """,
        (invoice_id, limit),
    )
    return cur.fetchall()


def list_stock_movements(cur, *, product_id: Optional[str] = None, location_id: Optional[str] = None, limit: int = 500) -> list:
    sql = """
        SELECT id, product_id, warehouse_id, location_id, quantity, movement_type,
               reference_type, reference_id, notes, created_by, created_at
        FROM stock_movements
        WHERE 1=1
    """
    params: list = []
    if product_id:
        sql += " AND product_id = %s"
        params.append(product_id)
    if location_id:
        sql += " AND location_id = %s"
        params.append(location_id)
    sql += " ORDER BY created_at DESC LIMIT %s"
    params.append(limit)
    cur.execute(sql, params)
    return cur.fetchall()
