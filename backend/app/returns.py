"""
Product returns.

A return is recorded as PENDING and then walked through
APPROVED -> PROCESSING -> COMPLETED (or REJECTED from PENDING/APPROVED).
Completing a return restocks every restockable line that names a location,
through the inner stock-adjustment entry, in the same unit of work as the
status change: either all lines are restocked and the return is COMPLETED, or
nothing changes.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, List, Optional, Sequence

from .actors import Actor
from .aggregates import get_location, get_products, require_customer
from .audit import AuditSink, record_audit_event
from .errors import InternalError, InvalidStateError, NotFoundError, ValidationError
from .ledger import adjust_stock_in
from .logs import json_log
from .money import ZERO, exact_money, exact_qty, q_money
from .status import ReturnAction, ReturnStatus, next_return_status
from .unit_of_work import UnitOfWork, run, run_joined
from .validation import parse_uuid_optional, parse_uuid_required

RETURN_TYPES = frozenset({"CUSTOMER_RETURN", "SUPPLIER_RETURN", "DAMAGED", "WARRANTY"})


@dataclass(frozen=True)
class ReturnLine:
    product_id: str
    quantity: Decimal
    unit_price: Decimal
    location_id: Optional[str] = None
    restockable: bool = True
    condition: str = "GOOD"


def new_return_no(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"RET-{now:%Y%m%d}-{uuid.uuid4().hex[:6].upper()}"


def _field(ln, name, default=None):
    if isinstance(ln, dict):
        return ln.get(name, default)
    return getattr(ln, name, default)


def _coerce_lines(lines: Sequence[Any]) -> List[ReturnLine]:
    out: List[ReturnLine] = []
    for i, ln in enumerate(lines or []):
        qty = exact_qty(_field(ln, "quantity"), f"lines[{i}].quantity")
        if qty <= ZERO:
            raise ValidationError(f"lines[{i}].quantity must be > 0", field="lines")
        price = exact_money(_field(ln, "unit_price"), f"lines[{i}].unit_price")
        if price < ZERO:
            raise ValidationError(f"lines[{i}].unit_price must be >= 0", field="lines")
        out.append(
            ReturnLine(
                product_id=parse_uuid_required(_field(ln, "product_id"), f"lines[{i}].product_id"),
                quantity=qty,
                unit_price=price,
                location_id=parse_uuid_optional(_field(ln, "location_id"), f"lines[{i}].location_id"),
                # Restockable unless explicitly marked otherwise.
                restockable=_field(ln, "restockable", True) is not False,
                condition=str(_field(ln, "condition") or "GOOD").strip().upper(),
            )
        )
    if not out:
        raise ValidationError("at least one line is required", field="lines")
    return out


def _validate_return(return_type, lines, restock_fee, customer_id, actor: Actor):
    rtype = str(return_type or "").strip().upper()
    if rtype not in RETURN_TYPES:
        raise ValidationError(f"unknown return type: {return_type}", field="return_type")
    fee = exact_money(restock_fee, "restock_fee")
    if fee < ZERO:
        raise ValidationError("restock_fee must be >= 0", field="restock_fee")
    return_lines = _coerce_lines(lines)
    total = sum((ln.quantity * ln.unit_price for ln in return_lines), ZERO)
    if fee > total:
        raise ValidationError("restock_fee exceeds the return total", field="restock_fee")
    if actor is None or not str(actor.user_id or "").strip():
        raise ValidationError("actor is required", field="actor")
    return rtype, return_lines, fee, total, parse_uuid_optional(customer_id, "customer_id")


def create_product_return_in(
    uow: UnitOfWork,
    return_type: str,
    lines: Sequence[Any],
    actor: Actor,
    *,
    customer_id: Optional[str] = None,
    reason: Optional[str] = None,
    restock_fee=None,
    reference_type: Optional[str] = None,
    reference_id: Optional[str] = None,
    notes: Optional[str] = None,
    audit: Optional[AuditSink] = None,
) -> dict:
    uow.ensure_active()
    rtype, return_lines, fee, total, customer_id = _validate_return(return_type, lines, restock_fee, customer_id, actor)

    if customer_id:
        customer_id = require_customer(uow, customer_id)
    get_products(uow, [ln.product_id for ln in return_lines])
    for loc in sorted({ln.location_id for ln in return_lines if ln.location_id}):
        get_location(uow, loc)

    ret = uow.fetchone(
        """
        INSERT INTO product_returns
          (id, return_no, return_type, status, customer_id, reference_type, reference_id, reason,
           total_amount, restock_fee, refund_amount, notes, created_by)
        VALUES
          (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING id, return_no, return_type, status, customer_id, total_amount, restock_fee, refund_amount,
                  created_by, created_at
        """,
        (
            new_return_no(),
            rtype,
            ReturnStatus.PENDING.value,
            customer_id,
            reference_type,
            reference_id,
            reason,
            q_money(total),
            fee,
            q_money(total - fee),
            notes,
            actor.user_id,
        ),
    )

    items = []
    for ln in return_lines:
        items.append(
            uow.fetchone(
                """
                INSERT INTO product_return_items
                  (id, return_id, product_id, location_id, quantity, unit_price, total_price, condition, restockable)
                VALUES
                  (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING id, return_id, product_id, location_id, quantity, unit_price, total_price, condition, restockable
                """,
                (
                    ret["id"],
                    ln.product_id,
                    ln.location_id,
                    ln.quantity,
                    ln.unit_price,
                    q_money(ln.quantity * ln.unit_price),
                    ln.condition,
                    ln.restockable,
                ),
            )
        )

    uow.after_commit(
        audit or record_audit_event,
        "product_return_created",
        entity_type="product_return",
        entity_id=ret["id"],
        user_id=actor.user_id,
        details={"return_no": ret["return_no"], "return_type": rtype, "lines": len(items)},
    )
    uow.after_commit(
        json_log,
        "info",
        "stock.return.created",
        return_id=ret["id"],
        return_no=ret["return_no"],
        return_type=rtype,
        refund_amount=q_money(total - fee),
        actor=actor.user_id,
    )
    return {"return": ret, "items": items}


def create_product_return(
    return_type: str,
    lines: Sequence[Any],
    actor: Actor,
    *,
    customer_id: Optional[str] = None,
    reason: Optional[str] = None,
    restock_fee=None,
    reference_type: Optional[str] = None,
    reference_id: Optional[str] = None,
    notes: Optional[str] = None,
    audit: Optional[AuditSink] = None,
    connect: Optional[Callable[[], Any]] = None,
) -> dict:
    _validate_return(return_type, lines, restock_fee, customer_id, actor)
    return run(
        create_product_return_in,
        return_type,
        lines,
        actor,
        customer_id=customer_id,
        reason=reason,
        restock_fee=restock_fee,
        reference_type=reference_type,
        reference_id=reference_id,
        notes=notes,
        audit=audit,
        connect=connect,
    )


# ---------------------------------------------------------------------------
# Status transitions
# ---------------------------------------------------------------------------


def _validate_transition(return_id, action, actor: Actor):
    return_id = parse_uuid_required(return_id, "return_id")
    try:
        act = ReturnAction(str(action or "").strip().upper())
    except ValueError:
        raise ValidationError(f"unknown return action: {action}", field="action")
    if actor is None or not str(actor.user_id or "").strip():
        raise ValidationError("actor is required", field="actor")
    return return_id, act


def _lock_return(uow: UnitOfWork, return_id: str) -> dict:
    row = uow.fetchone(
        """
        SELECT id, return_no, return_type, status
        FROM product_returns
        WHERE id = %s
        FOR UPDATE
        """,
        (return_id,),
    )
    if not row:
        raise NotFoundError("product return", return_id)
    return row


def transition_product_return_in(
    uow: UnitOfWork,
    return_id: str,
    action,
    actor: Actor,
    *,
    audit: Optional[AuditSink] = None,
) -> dict:
    uow.ensure_active()
    return_id, action = _validate_transition(return_id, action, actor)

    ret = _lock_return(uow, return_id)
    try:
        target = next_return_status(ret["status"], action)
    except (InvalidStateError, InternalError) as exc:
        json_log("warn", "stock.return.rejected", return_id=return_id, action=action, status=ret["status"], error=str(exc))
        raise

    movements = []
    if target == ReturnStatus.COMPLETED:
        items = uow.fetchall(
            """
            SELECT product_id, location_id, quantity, restockable
            FROM product_return_items
            WHERE return_id = %s
            ORDER BY product_id, location_id
            """,
            (ret["id"],),
        )
        for it in items:
            if not it.get("restockable") or not it.get("location_id"):
                continue
            adj = run_joined(
                uow,
                adjust_stock_in,
                str(it["location_id"]),
                str(it["product_id"]),
                exact_qty(it["quantity"]),
                f"Return restocked: {ret['return_type']}",
                ret["return_no"],
                actor,
                reference_type="RETURN",
                audit=audit,
            )
            movements.append(adj["movement"])

    now = datetime.now(timezone.utc)
    approved = action == ReturnAction.APPROVE
    updated = uow.fetchone(
        """
        UPDATE product_returns
        SET status = %s,
            approved_by = COALESCE(%s, approved_by),
            approved_at = COALESCE(%s, approved_at),
            completed_at = COALESCE(%s, completed_at),
            updated_at = now()
        WHERE id = %s
        RETURNING id, return_no, return_type, status, approved_by, approved_at, completed_at
        """,
        (
            target.value,
            actor.user_id if approved else None,
            now if approved else None,
            now if target == ReturnStatus.COMPLETED else None,
            ret["id"],
        ),
    )

    uow.after_commit(
        audit or record_audit_event,
        f"product_return_{action.value.lower()}",
        entity_type="product_return",
        entity_id=ret["id"],
        user_id=actor.user_id,
        details={"return_no": ret["return_no"], "from": ret["status"], "to": target.value, "restocked": len(movements)},
    )
    uow.after_commit(
        json_log,
        "info",
        "stock.return.transitioned",
        return_id=ret["id"],
        return_no=ret["return_no"],
        status=target.value,
        restocked=len(movements),
        actor=actor.user_id,
    )
    return {"return": updated, "movements": movements}


def transition_product_return(
    return_id: str,
    action,
    actor: Actor,
    *,
    audit: Optional[AuditSink] = None,
    connect: Optional[Callable[[], Any]] = None,
) -> dict:
    _validate_transition(return_id, action, actor)
    return run(transition_product_return_in, return_id, action, actor, audit=audit, connect=connect)
