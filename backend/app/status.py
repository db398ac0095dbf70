"""
Categorical state derived from numeric aggregate state.

Invoice status is only ever computed here once payments exist; handlers and the
aggregate updater never assign a status literal of their own.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum

from .errors import InternalError, InvalidStateError
from .money import ZERO, to_decimal


class InvoiceStatus(str, Enum):
    DRAFT = "DRAFT"
    SENT = "SENT"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    CANCELLED = "CANCELLED"


# Statuses that no longer accept payments.
CLOSED_INVOICE_STATUSES = frozenset({InvoiceStatus.PAID, InvoiceStatus.CANCELLED})


class MovementType(str, Enum):
    ADJUSTMENT = "ADJUSTMENT"
    TRANSFER_IN = "TRANSFER_IN"
    TRANSFER_OUT = "TRANSFER_OUT"


class PaymentStatus(str, Enum):
    CONFIRMED = "CONFIRMED"


class PosOrderStatus(str, Enum):
    DRAFT = "DRAFT"
    COMPLETED = "COMPLETED"


class PosPaymentStatus(str, Enum):
    PENDING = "PENDING"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    PAID = "PAID"


class ReturnStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"


class ReturnAction(str, Enum):
    APPROVE = "APPROVE"
    PROCESS = "PROCESS"
    COMPLETE = "COMPLETE"
    REJECT = "REJECT"


# action -> (statuses it may start from, status it lands in)
RETURN_TRANSITIONS = {
    ReturnAction.APPROVE: (frozenset({ReturnStatus.PENDING}), ReturnStatus.APPROVED),
    ReturnAction.PROCESS: (frozenset({ReturnStatus.APPROVED}), ReturnStatus.PROCESSING),
    ReturnAction.COMPLETE: (frozenset({ReturnStatus.PROCESSING}), ReturnStatus.COMPLETED),
    ReturnAction.REJECT: (frozenset({ReturnStatus.PENDING, ReturnStatus.APPROVED}), ReturnStatus.REJECTED),
}


def parse_invoice_status(raw) -> InvoiceStatus:
    try:
        return InvoiceStatus(str(raw or "").strip().upper())
    except ValueError:
        raise InternalError(f"unknown invoice status in store: {raw!r}")


def derive_invoice_status(current: InvoiceStatus, paid_amount: Decimal, balance_amount: Decimal) -> InvoiceStatus:
    if current == InvoiceStatus.CANCELLED:
        return current
    if to_decimal(balance_amount) <= ZERO:
        return InvoiceStatus.PAID
    if to_decimal(paid_amount) > ZERO:
        return InvoiceStatus.PARTIALLY_PAID
    # SENT/OVERDUE/DRAFT are owned by upstream scheduling.
    return current


def derive_movement_type(quantity: Decimal, *, transfer: bool) -> MovementType:
    if not transfer:
        return MovementType.ADJUSTMENT
    if to_decimal(quantity, "quantity") < ZERO:
        return MovementType.TRANSFER_OUT
    return MovementType.TRANSFER_IN


def derive_pos_payment_status(amount_paid: Decimal, total_amount: Decimal) -> PosPaymentStatus:
    paid = to_decimal(amount_paid)
    if paid >= to_decimal(total_amount):
        return PosPaymentStatus.PAID
    if paid > ZERO:
        return PosPaymentStatus.PARTIALLY_PAID
    return PosPaymentStatus.PENDING


def next_return_status(current, action: ReturnAction) -> ReturnStatus:
    try:
        status = ReturnStatus(str(current or "").strip().upper())
    except ValueError:
        raise InternalError(f"unknown return status in store: {current!r}")
    allowed, target = RETURN_TRANSITIONS[action]
    if status not in allowed:
        froms = " or ".join(sorted(s.value.lower() for s in allowed))
        raise InvalidStateError(
            f"only {froms} returns can be {target.value.lower()}",
            action=action,
            status=status,
        )
    return target
