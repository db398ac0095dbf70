from __future__ import annotations

from decimal import Decimal
from typing import Annotated, Literal, Optional, get_args
from uuid import UUID

from pydantic import BeforeValidator, Field, StringConstraints

from .errors import ValidationError


def _to_upper_str(v):
    if v is None:
        return v
    return str(v).strip().upper()


def _float_via_str(v):
    # JSON numbers decode as float; go through str() so 0.1 stays 0.1 instead of its binary expansion.
    if isinstance(v, float):
        return str(v)
    return v


# Canonical codes mirror the Postgres enums in `backend/db/migrations/001_ledger.sql`.
PaymentMethodCode = Literal[
    "BANK_TRANSFER",
    "MPESA",
    "BANK_CHEQUE",
    "CASH",
    "CASH_DEPOSIT",
    "CREDIT_CARD",
    "DEBIT_CARD",
    "PAYPAL",
    "STRIPE",
    "AIRTEL_MONEY",
    "PREPAID_VOUCHER",
    "STORE_CREDIT",
    "CRYPTOCURRENCY",
    "WIRE_TRANSFER",
    "OTHER",
]
PAYMENT_METHODS = frozenset(get_args(PaymentMethodCode))

PaymentMethod = Annotated[PaymentMethodCode, BeforeValidator(_to_upper_str)]
Role = Annotated[Optional[str], BeforeValidator(_to_upper_str)]

PositiveAmount = Annotated[Decimal, BeforeValidator(_float_via_str), Field(gt=0, max_digits=18, decimal_places=2)]
NonNegativeAmount = Annotated[Decimal, BeforeValidator(_float_via_str), Field(ge=0, max_digits=18, decimal_places=2)]
PositiveQuantity = Annotated[Decimal, BeforeValidator(_float_via_str), Field(gt=0, max_digits=18, decimal_places=3)]
SignedQuantity = Annotated[Decimal, BeforeValidator(_float_via_str), Field(max_digits=18, decimal_places=3)]
Percentage = Annotated[Decimal, BeforeValidator(_float_via_str), Field(ge=0, le=100, max_digits=5, decimal_places=2)]

Reference = Annotated[Optional[str], StringConstraints(strip_whitespace=True, max_length=120)]
Notes = Annotated[Optional[str], StringConstraints(strip_whitespace=True, max_length=500)]


def normalize_payment_method(v) -> Optional[str]:
    m = _to_upper_str(v)
    return m if m in PAYMENT_METHODS else None


def parse_uuid_optional(value, field_name: str) -> Optional[str]:
    raw = str(value or "").strip()
    if not raw:
        return None
    try:
        return str(UUID(raw))
    except ValueError:
        raise ValidationError(f"{field_name} must be a valid UUID", field=field_name)


def parse_uuid_required(value, field_name: str) -> str:
    out = parse_uuid_optional(value, field_name)
    if out is None:
        raise ValidationError(f"{field_name} is required", field=field_name)
    return out
