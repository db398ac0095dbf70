"""
POS order pricing, creation and checkout.

Pricing guardrails (price deviation, discount cap) run when the order is
created; stock, invoice and payment mutations happen at checkout, inside one
unit of work, through the inner ledger entries.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence

from .actors import Actor
from .aggregates import (
    charge_customer,
    ensure_walkin_customer,
    get_products,
    lock_customer,
    open_invoice,
    require_customer,
    save_customer,
)
from .audit import AuditSink, record_audit_event
from .config import settings
from .errors import InvalidStateError, NotFoundError, ValidationError
from .guardrails import check_discount_cap, check_overpayment, check_price_deviation, check_stock_available, enforce_logged
from .ledger import adjust_stock_in, apply_payment_in
from .logs import json_log
from .money import HUNDRED, ZERO, exact_money, exact_qty, pct_of, q_money, q_qty, to_decimal
from .status import PosOrderStatus, derive_pos_payment_status
from .unit_of_work import UnitOfWork, run, run_joined
from .validation import normalize_payment_method, parse_uuid_optional, parse_uuid_required


@dataclass(frozen=True)
class OrderLine:
    product_id: str
    quantity: Decimal
    unit_price: Optional[Decimal] = None


def new_order_no(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"POS-{now:%Y%m%d}-{uuid.uuid4().hex[:6].upper()}"


def price_order_line(catalog_price, requested_unit_price, actor_role: Optional[str]) -> dict:
    """
    Resolve the unit price of one POS line.

    No requested price means the catalog price. A requested price that differs
    from the catalog is an override: allowed within the deviation threshold for
    anyone, beyond it only for override-authorized roles.
    """
    catalog = to_decimal(catalog_price, "catalog_price")
    if catalog < ZERO:
        raise ValidationError("catalog_price must be >= 0", field="catalog_price")
    unit = catalog if requested_unit_price is None else to_decimal(requested_unit_price, "unit_price")
    if unit < ZERO:
        raise ValidationError("unit_price must be >= 0", field="unit_price")
    enforce_logged(
        "price_order_line",
        check_price_deviation(catalog, unit, actor_role),
        catalog_price=catalog,
        unit_price=unit,
        role=actor_role,
    )
    unit_price = q_money(unit)
    return {"unit_price": unit_price, "override": unit_price != q_money(catalog)}


# ---------------------------------------------------------------------------
# Order creation
# ---------------------------------------------------------------------------


def _coerce_lines(lines: Sequence[Any]) -> List[OrderLine]:
    out: List[OrderLine] = []
    for i, ln in enumerate(lines or []):
        if isinstance(ln, OrderLine):
            raw = {"product_id": ln.product_id, "quantity": ln.quantity, "unit_price": ln.unit_price}
        elif isinstance(ln, dict):
            raw = ln
        else:
            raw = {"product_id": getattr(ln, "product_id", None), "quantity": getattr(ln, "quantity", None), "unit_price": getattr(ln, "unit_price", None)}
        pid = parse_uuid_required(raw.get("product_id"), f"lines[{i}].product_id")
        qty = exact_qty(raw.get("quantity"), f"lines[{i}].quantity")
        if qty <= ZERO:
            raise ValidationError(f"lines[{i}].quantity must be > 0", field="lines")
        price = raw.get("unit_price")
        out.append(OrderLine(product_id=pid, quantity=qty, unit_price=(None if price is None else exact_money(price, f"lines[{i}].unit_price"))))
    if not out:
        raise ValidationError("at least one line is required", field="lines")
    return out


def _validate_order(customer_id, lines, tax_pct, discount_pct, actor: Actor):
    if actor is None or not str(actor.user_id or "").strip():
        raise ValidationError("actor is required", field="actor")
    tax = to_decimal(tax_pct, "tax_pct")
    if tax < ZERO or tax > HUNDRED:
        raise ValidationError("tax_pct must be between 0 and 100", field="tax_pct")
    discount = to_decimal(discount_pct, "discount_pct")
    if discount < ZERO:
        raise ValidationError("discount_pct must be >= 0", field="discount_pct")
    return parse_uuid_optional(customer_id, "customer_id"), _coerce_lines(lines), tax, discount


def create_pos_order_in(
    uow: UnitOfWork,
    customer_id: Optional[str],
    lines: Sequence[Any],
    tax_pct,
    discount_pct,
    actor: Actor,
    *,
    audit: Optional[AuditSink] = None,
) -> dict:
    uow.ensure_active()
    customer_id, order_lines, tax_pct, discount_pct = _validate_order(customer_id, lines, tax_pct, discount_pct, actor)
    enforce_logged("create_pos_order", check_discount_cap(discount_pct), discount_pct=discount_pct)

    if customer_id:
        customer_id = require_customer(uow, customer_id)

    products = get_products(uow, [ln.product_id for ln in order_lines])

    requested: Dict[str, Decimal] = {}
    for ln in order_lines:
        requested[ln.product_id] = requested.get(ln.product_id, ZERO) + ln.quantity
    for pid in sorted(requested):
        enforce_logged(
            "create_pos_order",
            check_stock_available(products[pid].get("quantity"), requested[pid]),
            product_id=pid,
        )

    priced = []
    subtotal = ZERO
    for ln in order_lines:
        p = price_order_line(products[ln.product_id].get("price"), ln.unit_price, actor.normalized_role)
        qty = q_qty(ln.quantity)
        line_total = p["unit_price"] * qty
        subtotal += line_total
        priced.append((ln, qty, p, line_total))

    # Rounded once, when persisted.
    tax = pct_of(subtotal, tax_pct)
    discount = pct_of(subtotal, discount_pct)
    total = subtotal + tax - discount

    order = uow.fetchone(
        """
        INSERT INTO pos_orders
          (id, order_no, customer_id, subtotal, tax_pct, tax_amount, discount_pct, discount_amount, total_amount, status, created_by)
        VALUES
          (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING id, order_no, customer_id, subtotal, tax_pct, tax_amount, discount_pct, discount_amount,
                  total_amount, status, created_by, created_at
        """,
        (
            new_order_no(),
            customer_id or None,
            q_money(subtotal),
            tax_pct,
            q_money(tax),
            discount_pct,
            q_money(discount),
            q_money(total),
            PosOrderStatus.DRAFT.value,
            actor.user_id,
        ),
    )

    items = []
    for ln, qty, p, line_total in priced:
        items.append(
            uow.fetchone(
                """
                INSERT INTO pos_order_items
                  (id, order_id, product_id, quantity, catalog_price, unit_price, price_override, total_price)
                VALUES
                  (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s)
                RETURNING id, order_id, product_id, quantity, catalog_price, unit_price, price_override, total_price
                """,
                (
                    order["id"],
                    ln.product_id,
                    qty,
                    q_money(products[ln.product_id].get("price")),
                    p["unit_price"],
                    p["override"],
                    q_money(line_total),
                ),
            )
        )

    overrides = sum(1 for _ln, _qty, p, _t in priced if p["override"])
    uow.after_commit(
        audit or record_audit_event,
        "pos_order_created",
        entity_type="pos_order",
        entity_id=order["id"],
        user_id=actor.user_id,
        details={"order_no": order["order_no"], "total": str(q_money(total)), "price_overrides": overrides},
    )
    uow.after_commit(
        json_log,
        "info",
        "pos.order.created",
        order_id=order["id"],
        order_no=order["order_no"],
        total=q_money(total),
        lines=len(items),
        price_overrides=overrides,
        actor=actor.user_id,
    )
    return {"order": order, "items": items}


def create_pos_order(
    customer_id: Optional[str],
    lines: Sequence[Any],
    tax_pct,
    discount_pct,
    actor: Actor,
    *,
    audit: Optional[AuditSink] = None,
    connect: Optional[Callable[[], Any]] = None,
) -> dict:
    _validate_order(customer_id, lines, tax_pct, discount_pct, actor)
    return run(create_pos_order_in, customer_id, lines, tax_pct, discount_pct, actor, audit=audit, connect=connect)


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------


def _validate_checkout(order_id: str, location_id: str, payment_method: str, amount_paid, actor: Actor):
    order_id = parse_uuid_required(order_id, "order_id")
    location_id = parse_uuid_required(location_id, "location_id")
    method = normalize_payment_method(payment_method)
    if not method:
        raise ValidationError(f"unknown payment method: {payment_method}", field="payment_method")
    amount = None if amount_paid is None else exact_money(amount_paid, "amount_paid")
    if amount is not None and amount < ZERO:
        raise ValidationError("amount_paid must be >= 0", field="amount_paid")
    if actor is None or not str(actor.user_id or "").strip():
        raise ValidationError("actor is required", field="actor")
    return order_id, location_id, method, amount


def _lock_order(uow: UnitOfWork, order_id: str) -> dict:
    row = uow.fetchone(
        """
        SELECT id, order_no, customer_id, total_amount, status
        FROM pos_orders
        WHERE id = %s
        FOR UPDATE
        """,
        (order_id,),
    )
    if not row:
        raise NotFoundError("pos order", order_id)
    if str(row.get("status") or "").upper() != PosOrderStatus.DRAFT.value:
        raise InvalidStateError("pos order is already completed", order_id=str(order_id), status=row.get("status"))
    return row


def checkout_pos_order_in(
    uow: UnitOfWork,
    order_id: str,
    location_id: str,
    payment_method: str,
    amount_paid,
    actor: Actor,
    *,
    audit: Optional[AuditSink] = None,
) -> dict:
    uow.ensure_active()
    order_id, location_id, method, amount = _validate_checkout(order_id, location_id, payment_method, amount_paid, actor)

    order = _lock_order(uow, order_id)
    order_no = order["order_no"]
    total = q_money(order.get("total_amount"))
    amount = total if amount is None else q_money(amount)
    enforce_logged("checkout_pos_order", check_overpayment(amount, total), order_id=str(order["id"]))

    items = uow.fetchall(
        """
        SELECT product_id, quantity
        FROM pos_order_items
        WHERE order_id = %s
        ORDER BY product_id
        """,
        (order["id"],),
    )
    if not items:
        raise InvalidStateError("pos order has no lines", order_id=str(order["id"]))

    customer_id = str(order["customer_id"]) if order.get("customer_id") else ensure_walkin_customer(uow, settings.walkin_customer_code)

    movements = []
    for it in items:
        adj = run_joined(
            uow,
            adjust_stock_in,
            location_id,
            str(it["product_id"]),
            -to_decimal(it["quantity"], "quantity"),
            f"POS sale {order_no}",
            order_no,
            actor,
            reference_type="POS_ORDER",
            audit=audit,
        )
        movements.append(adj["movement"])

    invoice = open_invoice(
        uow,
        invoice_no=f"INV-{order_no}",
        customer_id=customer_id,
        total_amount=total,
        issue_date=date.today(),
        description=f"POS order {order_no}",
    )
    save_customer(uow, charge_customer(lock_customer(uow, customer_id), total))

    paid = None
    if amount > ZERO:
        paid = run_joined(uow, apply_payment_in, invoice.id, amount, method, order_no, actor, notes=f"POS order {order_no}", audit=audit)

    payment_status = derive_pos_payment_status(amount, total)
    completed = uow.fetchone(
        """
        UPDATE pos_orders
        SET status = %s,
            payment_method = %s,
            amount_paid = %s,
            payment_status = %s,
            customer_id = %s,
            invoice_id = %s,
            location_id = %s,
            completed_at = now()
        WHERE id = %s
        RETURNING id, order_no, customer_id, invoice_id, location_id, total_amount, amount_paid,
                  payment_method, payment_status, status, completed_at
        """,
        (
            PosOrderStatus.COMPLETED.value,
            method,
            amount,
            payment_status.value,
            customer_id,
            invoice.id,
            location_id,
            order["id"],
        ),
    )

    uow.after_commit(
        audit or record_audit_event,
        "pos_order_completed",
        entity_type="pos_order",
        entity_id=order["id"],
        user_id=actor.user_id,
        details={"order_no": order_no, "invoice_id": invoice.id, "amount_paid": str(amount), "payment_status": payment_status.value},
    )
    uow.after_commit(
        json_log,
        "info",
        "pos.order.completed",
        order_id=order["id"],
        order_no=order_no,
        invoice_id=invoice.id,
        total=total,
        amount_paid=amount,
        payment_status=payment_status.value,
        actor=actor.user_id,
    )
    return {
        "order": completed,
        "invoice": (paid["invoice"] if paid else asdict(invoice)),
        "payment": (paid["payment"] if paid else None),
        "movements": movements,
    }


def checkout_pos_order(
    order_id: str,
    location_id: str,
    payment_method: str,
    amount_paid,
    actor: Actor,
    *,
    audit: Optional[AuditSink] = None,
    connect: Optional[Callable[[], Any]] = None,
) -> dict:
    _validate_checkout(order_id, location_id, payment_method, amount_paid, actor)
    return run(checkout_pos_order_in, order_id, location_id, payment_method, amount_paid, actor, audit=audit, connect=connect)
