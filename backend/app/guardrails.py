from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from .errors import GuardrailReason, GuardrailViolation, InvalidStateError
from .logs import json_log
from .money import ZERO, deviation_pct, to_decimal
from .status import CLOSED_INVOICE_STATUSES, InvoiceStatus

MAX_PRICE_DEVIATION_PCT = Decimal("20")
MAX_DISCOUNT_PCT = Decimal("15")
PRICE_OVERRIDE_ROLES = frozenset({"ADMIN", "FINANCE_MANAGER"})


@dataclass(frozen=True)
class Rejection:
    reason: GuardrailReason
    detail: str


# Every check returns None to allow, or a Rejection. They never touch the store:
# callers pass state already read (and locked) inside the active unit of work.


def check_invoice_payable(status: InvoiceStatus) -> Optional[Rejection]:
    if status in CLOSED_INVOICE_STATUSES:
        return Rejection(GuardrailReason.INVOICE_CLOSED, f"invoice is {status.value.lower()} and cannot accept payments")
    return None


def check_overpayment(amount: Decimal, balance: Decimal) -> Optional[Rejection]:
    amount = to_decimal(amount)
    balance = to_decimal(balance)
    if amount > balance:
        return Rejection(GuardrailReason.OVERPAYMENT, f"payment {amount} exceeds outstanding balance {balance}")
    return None


def check_stock_available(available: Decimal, requested: Decimal) -> Optional[Rejection]:
    available = to_decimal(available, "quantity")
    requested = to_decimal(requested, "quantity")
    if requested > available:
        return Rejection(
            GuardrailReason.INSUFFICIENT_STOCK,
            f"insufficient stock: requested {requested}, available {available}",
        )
    return None


def check_adjustment(current: Decimal, delta: Decimal, *, correction: bool = False) -> Optional[Rejection]:
    resulting = to_decimal(current, "quantity") + to_decimal(delta, "quantity")
    if resulting < ZERO and not correction:
        return Rejection(
            GuardrailReason.NEGATIVE_STOCK,
            f"adjustment would leave stock at {resulting}; flag it as a correction to allow negative stock",
        )
    return None


def can_override_price(role: Optional[str]) -> bool:
    return str(role or "").strip().upper() in PRICE_OVERRIDE_ROLES


def check_price_deviation(catalog_price: Decimal, unit_price: Decimal, role: Optional[str]) -> Optional[Rejection]:
    catalog_price = to_decimal(catalog_price)
    unit_price = to_decimal(unit_price)
    if unit_price == catalog_price or can_override_price(role):
        return None
    if catalog_price <= 0:
        return Rejection(GuardrailReason.PRICE_DEVIATION, "price override on an unpriced product requires a manager role")
    deviation = deviation_pct(unit_price, catalog_price)
    if deviation > MAX_PRICE_DEVIATION_PCT:
        return Rejection(
            GuardrailReason.PRICE_DEVIATION,
            f"price override deviates {deviation.quantize(Decimal('0.01'))}% from catalog (max {MAX_PRICE_DEVIATION_PCT}%)",
        )
    return None


def check_discount_cap(discount_pct: Decimal) -> Optional[Rejection]:
    discount_pct = to_decimal(discount_pct, "discount_pct")
    if discount_pct > MAX_DISCOUNT_PCT:
        return Rejection(GuardrailReason.DISCOUNT_CAP, f"discount {discount_pct}% exceeds cap of {MAX_DISCOUNT_PCT}%")
    return None


def enforce(*results: Optional[Rejection]) -> None:
    """
    Raise for the first rejection (in argument order); return quietly when all allow.
    A closed invoice is an invalid-state outcome rather than a guardrail breach.
    """
    for r in results:
        if r is None:
            continue
        if r.reason == GuardrailReason.INVOICE_CLOSED:
            raise InvalidStateError(r.detail, reason=r.reason)
        raise GuardrailViolation(r.reason, r.detail)


def enforce_logged(op: str, *results: Optional[Rejection], **fields) -> None:
    """`enforce()` that also emits `ledger.guardrail.rejected` before raising."""
    try:
        enforce(*results)
    except (GuardrailViolation, InvalidStateError) as exc:
        json_log("warn", "ledger.guardrail.rejected", op=op, code=exc.code, detail=exc.detail, **exc.context, **fields)
        raise
