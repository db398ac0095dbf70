"""
Guarded ledger mutations: payments against invoices, stock adjustments and transfers.

Every operation comes in two forms:
- `<op>(...)` opens its own unit of work (top-level entry).
- `<op>_in(uow, ...)` runs inside a unit of work the caller owns (inner entry).

Inside the unit the order is always: lock + read current aggregate state,
run guardrails, reduce, persist aggregates, append journal record(s). Any
exception before commit rolls the whole unit back.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, Callable, Optional

from .actors import Actor
from .aggregates import (
    apply_movement,
    apply_payment_to_customer,
    apply_payment_to_invoice,
    get_location,
    get_product,
    increment_product_quantity,
    lock_customer,
    lock_invoice,
    lock_stock_levels,
    save_customer,
    save_invoice,
    save_stock_level,
)
from .audit import AuditSink, record_audit_event
from .errors import ValidationError
from .guardrails import (
    check_adjustment,
    check_invoice_payable,
    check_overpayment,
    check_stock_available,
    enforce_logged,
)
from .journal import new_transfer_reference, record_payment, record_stock_movement
from .logs import json_log
from .money import ZERO, exact_money, exact_qty
from .unit_of_work import UnitOfWork, run
from .validation import normalize_payment_method, parse_uuid_required


def _require_actor(actor: Actor) -> Actor:
    if actor is None or not str(actor.user_id or "").strip():
        raise ValidationError("actor is required", field="actor")
    return actor


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------


def _validate_payment(invoice_id: str, amount, method: str, actor: Actor) -> tuple[str, Decimal, str]:
    invoice_id = parse_uuid_required(invoice_id, "invoice_id")
    amount = exact_money(amount)
    if amount <= ZERO:
        raise ValidationError("amount must be > 0", field="amount")
    m = normalize_payment_method(method)
    if not m:
        raise ValidationError(f"unknown payment method: {method}", field="method")
    _require_actor(actor)
    return invoice_id, amount, m


def apply_payment_in(
    uow: UnitOfWork,
    invoice_id: str,
    amount,
    method: str,
    reference: Optional[str],
    actor: Actor,
    *,
    payment_date: Optional[date] = None,
    notes: Optional[str] = None,
    audit: Optional[AuditSink] = None,
) -> dict:
    uow.ensure_active()
    invoice_id, amount, method = _validate_payment(invoice_id, amount, method, actor)

    invoice = lock_invoice(uow, invoice_id)
    enforce_logged(
        "apply_payment",
        check_invoice_payable(invoice.status),
        check_overpayment(amount, invoice.balance_amount),
        invoice_id=invoice.id,
        amount=amount,
    )

    updated = apply_payment_to_invoice(invoice, amount)
    invoice_row = save_invoice(uow, updated)
    payment = record_payment(
        uow,
        invoice_id=invoice.id,
        customer_id=invoice.customer_id,
        amount=amount,
        method=method,
        reference=reference,
        actor=actor,
        payment_date=payment_date,
        notes=notes,
    )

    customer_row = None
    if invoice.customer_id:
        # Shared by all of the customer's invoices: locked last to keep the hold short.
        customer = lock_customer(uow, invoice.customer_id)
        customer_row = save_customer(uow, apply_payment_to_customer(customer, amount))

    uow.after_commit(
        audit or record_audit_event,
        "payment_applied",
        entity_type="payment",
        entity_id=payment["id"],
        user_id=actor.user_id,
        details={"invoice_id": invoice.id, "amount": str(amount), "method": method, "status": updated.status.value},
    )
    uow.after_commit(
        json_log,
        "info",
        "ledger.payment.applied",
        invoice_id=invoice.id,
        payment_id=payment["id"],
        amount=amount,
        status=updated.status.value,
        actor=actor.user_id,
    )
    return {"payment": payment, "invoice": invoice_row, "customer": customer_row}


def apply_payment(
    invoice_id: str,
    amount,
    method: str,
    reference: Optional[str],
    actor: Actor,
    *,
    payment_date: Optional[date] = None,
    notes: Optional[str] = None,
    audit: Optional[AuditSink] = None,
    connect: Optional[Callable[[], Any]] = None,
) -> dict:
    # Malformed input is rejected before a transaction is opened.
    _validate_payment(invoice_id, amount, method, actor)
    return run(
        apply_payment_in,
        invoice_id,
        amount,
        method,
        reference,
        actor,
        payment_date=payment_date,
        notes=notes,
        audit=audit,
        connect=connect,
    )


# ---------------------------------------------------------------------------
# Stock adjustments
# ---------------------------------------------------------------------------


def _validate_adjustment(location_id: str, product_id: str, quantity_delta, actor: Actor) -> tuple[str, str, Decimal]:
    location_id = parse_uuid_required(location_id, "location_id")
    product_id = parse_uuid_required(product_id, "product_id")
    delta = exact_qty(quantity_delta, "quantity_delta")
    if delta == ZERO:
        raise ValidationError("quantity_delta must be non-zero", field="quantity_delta")
    _require_actor(actor)
    return location_id, product_id, delta


def adjust_stock_in(
    uow: UnitOfWork,
    location_id: str,
    product_id: str,
    quantity_delta,
    reason: Optional[str],
    reference: Optional[str],
    actor: Actor,
    *,
    correction: bool = False,
    reference_type: Optional[str] = None,
    audit: Optional[AuditSink] = None,
) -> dict:
    uow.ensure_active()
    location_id, product_id, delta = _validate_adjustment(location_id, product_id, quantity_delta, actor)

    location = get_location(uow, location_id)
    get_product(uow, product_id)
    level = lock_stock_levels(uow, product_id, {location_id: str(location["warehouse_id"])})[location_id]
    enforce_logged(
        "adjust_stock",
        check_adjustment(level.quantity, delta, correction=correction),
        product_id=product_id,
        location_id=location_id,
        quantity_delta=delta,
    )

    level_row = save_stock_level(uow, apply_movement(level, delta))
    product_quantity = increment_product_quantity(uow, product_id, delta)
    movement = record_stock_movement(
        uow,
        product_id=product_id,
        warehouse_id=level.warehouse_id,
        location_id=location_id,
        quantity=delta,
        actor=actor,
        reference_type=(reference_type or "MANUAL") if reference else None,
        reference_id=reference,
        notes=reason,
    )

    uow.after_commit(
        audit or record_audit_event,
        "stock_adjusted",
        entity_type="stock_movement",
        entity_id=movement["id"],
        user_id=actor.user_id,
        details={
            "product_id": product_id,
            "location_id": location_id,
            "quantity_delta": str(delta),
            "reason": reason,
            "correction": correction,
        },
    )
    uow.after_commit(
        json_log,
        "info",
        "ledger.stock.adjusted",
        product_id=product_id,
        location_id=location_id,
        quantity_delta=delta,
        movement_id=movement["id"],
        actor=actor.user_id,
    )
    return {"stock_level": level_row, "product_quantity": product_quantity, "movement": movement}


def adjust_stock(
    location_id: str,
    product_id: str,
    quantity_delta,
    reason: Optional[str],
    reference: Optional[str],
    actor: Actor,
    *,
    correction: bool = False,
    audit: Optional[AuditSink] = None,
    connect: Optional[Callable[[], Any]] = None,
) -> dict:
    _validate_adjustment(location_id, product_id, quantity_delta, actor)
    return run(
        adjust_stock_in,
        location_id,
        product_id,
        quantity_delta,
        reason,
        reference,
        actor,
        correction=correction,
        audit=audit,
        connect=connect,
    )


# ---------------------------------------------------------------------------
# Stock transfers
# ---------------------------------------------------------------------------


def _validate_transfer(from_location_id: str, to_location_id: str, product_id: str, quantity, actor: Actor) -> tuple[str, str, str, Decimal]:
    from_location_id = parse_uuid_required(from_location_id, "from_location_id")
    to_location_id = parse_uuid_required(to_location_id, "to_location_id")
    if from_location_id == to_location_id:
        raise ValidationError("from and to locations must be different", field="to_location_id")
    product_id = parse_uuid_required(product_id, "product_id")
    qty = exact_qty(quantity, "quantity")
    if qty <= ZERO:
        raise ValidationError("quantity must be > 0", field="quantity")
    _require_actor(actor)
    return from_location_id, to_location_id, product_id, qty


def transfer_stock_in(
    uow: UnitOfWork,
    from_location_id: str,
    to_location_id: str,
    product_id: str,
    quantity,
    reason: Optional[str],
    actor: Actor,
    *,
    reference: Optional[str] = None,
    audit: Optional[AuditSink] = None,
) -> dict:
    uow.ensure_active()
    from_location_id, to_location_id, product_id, qty = _validate_transfer(from_location_id, to_location_id, product_id, quantity, actor)

    src = get_location(uow, from_location_id)
    dst = get_location(uow, to_location_id)
    get_product(uow, product_id)
    levels = lock_stock_levels(
        uow,
        product_id,
        {from_location_id: str(src["warehouse_id"]), to_location_id: str(dst["warehouse_id"])},
    )
    source, destination = levels[from_location_id], levels[to_location_id]
    enforce_logged(
        "transfer_stock",
        check_stock_available(source.quantity, qty),
        product_id=product_id,
        from_location_id=from_location_id,
        to_location_id=to_location_id,
        quantity=qty,
    )

    # Product.quantity is untouched: a cross-location move does not change the total on hand.
    from_row = save_stock_level(uow, apply_movement(source, -qty))
    to_row = save_stock_level(uow, apply_movement(destination, qty))

    ref = (reference or "").strip() or new_transfer_reference()
    out_move = record_stock_movement(
        uow,
        product_id=product_id,
        warehouse_id=source.warehouse_id,
        location_id=from_location_id,
        quantity=-qty,
        actor=actor,
        transfer=True,
        reference_type="TRANSFER",
        reference_id=ref,
        notes=reason,
    )
    in_move = record_stock_movement(
        uow,
        product_id=product_id,
        warehouse_id=destination.warehouse_id,
        location_id=to_location_id,
        quantity=qty,
        actor=actor,
        transfer=True,
        reference_type="TRANSFER",
        reference_id=ref,
        notes=reason,
    )

    uow.after_commit(
        audit or record_audit_event,
        "stock_transferred",
        entity_type="stock_movement",
        entity_id=out_move["id"],
        user_id=actor.user_id,
        details={
            "in_id": str(in_move["id"]),
            "reference": ref,
            "product_id": product_id,
            "from_location_id": from_location_id,
            "to_location_id": to_location_id,
            "quantity": str(qty),
            "reason": reason,
        },
    )
    uow.after_commit(
        json_log,
        "info",
        "ledger.stock.transferred",
        product_id=product_id,
        from_location_id=from_location_id,
        to_location_id=to_location_id,
        quantity=qty,
        reference=ref,
        actor=actor.user_id,
    )
    return {"reference": ref, "from_level": from_row, "to_level": to_row, "movements": [out_move, in_move]}


def transfer_stock(
    from_location_id: str,
    to_location_id: str,
    product_id: str,
    quantity,
    reason: Optional[str],
    actor: Actor,
    *,
    reference: Optional[str] = None,
    audit: Optional[AuditSink] = None,
    connect: Optional[Callable[[], Any]] = None,
) -> dict:
    _validate_transfer(from_location_id, to_location_id, product_id, quantity, actor)
    return run(
        transfer_stock_in,
        from_location_id,
        to_location_id,
        product_id,
        quantity,
        reason,
        actor,
        reference=reference,
        audit=audit,
        connect=connect,
    )
