from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from .errors import ValidationError

# Money is stored as numeric(18,2) and quantities as numeric(18,3).
MONEY_Q = Decimal("0.01")
QTY_Q = Decimal("0.001")
ZERO = Decimal("0")
HUNDRED = Decimal("100")

# Money never flows through binary floats; this alias only documents intent at call sites.
Money = Decimal


def to_decimal(v, field: str = "amount") -> Decimal:
    if v is None:
        return ZERO
    if isinstance(v, Decimal):
        d = v
    else:
        try:
            # Go through str() so a float literal like 0.1 stays 0.1 instead of its binary expansion.
            d = Decimal(str(v).strip())
        except (InvalidOperation, ValueError):
            raise ValidationError(f"{field} must be a decimal number", field=field)
    if not d.is_finite():
        raise ValidationError(f"{field} must be a finite number", field=field)
    return d


def q_money(v) -> Decimal:
    return to_decimal(v).quantize(MONEY_Q, rounding=ROUND_HALF_UP)


def q_qty(v) -> Decimal:
    return to_decimal(v, "quantity").quantize(QTY_Q, rounding=ROUND_HALF_UP)


def pct_of(amount: Decimal, pct: Decimal) -> Decimal:
    # Unrounded; callers round once with q_money() when the value is persisted.
    return to_decimal(amount) * to_decimal(pct, "percentage") / HUNDRED


def deviation_pct(value: Decimal, reference: Decimal) -> Decimal:
    """
    Absolute deviation of `value` from `reference`, as a percentage of `reference`.
    `reference` must be > 0.
    """
    reference = to_decimal(reference)
    if reference <= 0:
        raise ValueError("reference must be > 0")
    return (to_decimal(value) - reference).copy_abs() / reference * HUNDRED


def is_zero(v) -> bool:
    return to_decimal(v) == ZERO


def is_negative(v) -> bool:
    return to_decimal(v) < ZERO


def _exact(v, q: Decimal, field: str) -> Decimal:
    d = to_decimal(v, field)
    try:
        exact = d.quantize(q)
    except InvalidOperation:
        raise ValidationError(f"{field} is out of range", field=field)
    if exact != d:
        raise ValidationError(f"{field} has more than {-q.as_tuple().exponent} decimal places", field=field)
    return exact


def exact_money(v, field: str = "amount") -> Decimal:
    """Like `to_decimal`, but rejects values finer than a cent instead of rounding them away."""
    return _exact(v, MONEY_Q, field)


def exact_qty(v, field: str = "quantity") -> Decimal:
    return _exact(v, QTY_Q, field)
