"""
Typed errors raised by the ledger engine.

Business outcomes (not found, closed invoice, guardrail rejections) are raised as
specific subclasses so HTTP handlers and internal callers can branch on type and
`code` instead of parsing messages. Infrastructure failures inside a unit of work
surface as `ConflictRetryable` (lock/serialization) or `InternalError`.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class GuardrailReason(str, Enum):
    OVERPAYMENT = "OVERPAYMENT"
    INVOICE_CLOSED = "INVOICE_CLOSED"
    INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"
    NEGATIVE_STOCK = "NEGATIVE_STOCK"
    PRICE_DEVIATION = "PRICE_DEVIATION"
    DISCOUNT_CAP = "DISCOUNT_CAP"


class LedgerError(Exception):
    code = "ledger_error"
    status_code = 500
    retryable = False

    def __init__(self, detail: str, **context: Any):
        super().__init__(detail)
        self.detail = detail
        self.context = context

    def to_dict(self) -> dict:
        out = {"detail": self.detail, "code": self.code}
        out.update({k: (v.value if isinstance(v, Enum) else v) for k, v in self.context.items()})
        return out


class NotFoundError(LedgerError):
    code = "not_found"
    status_code = 404

    def __init__(self, resource: str, ident: Any = None):
        super().__init__(f"{resource} not found", resource=resource, id=(str(ident) if ident is not None else None))
        self.resource = resource


class InvalidStateError(LedgerError):
    code = "invalid_state"
    status_code = 409


class GuardrailViolation(LedgerError):
    code = "guardrail_violation"
    status_code = 409

    def __init__(self, reason: GuardrailReason, detail: str, **context: Any):
        super().__init__(detail, reason=reason, **context)
        self.reason = reason


class ValidationError(LedgerError):
    code = "validation_error"
    status_code = 400

    def __init__(self, detail: str, field: Optional[str] = None):
        if field:
            super().__init__(detail, field=field)
        else:
            super().__init__(detail)
        self.field = field


class ConflictRetryable(LedgerError):
    code = "conflict_retryable"
    status_code = 409
    retryable = True

    def __init__(self, detail: str = "concurrent update in progress; retry with fresh state", **context: Any):
        super().__init__(detail, retryable=True, **context)


class InternalError(LedgerError):
    code = "internal_error"
    status_code = 500

    def __init__(self, detail: str = "internal error"):
        super().__init__(detail)
