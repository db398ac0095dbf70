"""
Denormalized running totals and the reducers that advance them.

Each aggregate has a pure reducer `(state, event amount) -> new state`; the SQL
helpers below only load (with a row lock) and persist what a reducer produced.
Ledger operations call the reducer and the journal writer in the same unit of
work, so totals and the append-only records cannot drift apart.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from typing import Dict, Optional

from .errors import InvalidStateError, NotFoundError
from .money import ZERO, q_money, q_qty, to_decimal
from .status import InvoiceStatus, derive_invoice_status, parse_invoice_status
from .unit_of_work import UnitOfWork


@dataclass(frozen=True)
class InvoiceAggregate:
    id: str
    customer_id: Optional[str]
    total_amount: Decimal
    paid_amount: Decimal
    balance_amount: Decimal
    status: InvoiceStatus
    invoice_no: Optional[str] = None


@dataclass(frozen=True)
class CustomerBalance:
    id: str
    total_outstanding: Decimal
    total_paid: Decimal
    current_balance: Decimal


@dataclass(frozen=True)
class StockLevelAggregate:
    id: str
    product_id: str
    warehouse_id: str
    location_id: str
    quantity: Decimal


# ---------------------------------------------------------------------------
# Reducers (pure)
# ---------------------------------------------------------------------------


def apply_payment_to_invoice(invoice: InvoiceAggregate, amount: Decimal) -> InvoiceAggregate:
    paid = q_money(invoice.paid_amount + to_decimal(amount))
    # Clamp absorbs cent-level slack between stored totals; genuine overpayment is rejected before this.
    balance = max(q_money(invoice.total_amount - paid), ZERO)
    status = derive_invoice_status(invoice.status, paid, balance)
    return replace(invoice, paid_amount=paid, balance_amount=balance, status=status)


def apply_payment_to_customer(customer: CustomerBalance, amount: Decimal) -> CustomerBalance:
    total_paid = q_money(customer.total_paid + to_decimal(amount))
    return replace(customer, total_paid=total_paid, current_balance=q_money(customer.total_outstanding - total_paid))


def charge_customer(customer: CustomerBalance, amount: Decimal) -> CustomerBalance:
    total_outstanding = q_money(customer.total_outstanding + to_decimal(amount))
    return replace(
        customer,
        total_outstanding=total_outstanding,
        current_balance=q_money(total_outstanding - customer.total_paid),
    )


def apply_movement(level: StockLevelAggregate, quantity: Decimal) -> StockLevelAggregate:
    return replace(level, quantity=q_qty(level.quantity + to_decimal(quantity, "quantity")))


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------


def _d(v) -> Decimal:
    return Decimal(str(v if v is not None else 0))


def _invoice_from_row(row: dict) -> InvoiceAggregate:
    return InvoiceAggregate(
        id=str(row["id"]),
        customer_id=(str(row["customer_id"]) if row.get("customer_id") else None),
        total_amount=_d(row.get("total_amount")),
        paid_amount=_d(row.get("paid_amount")),
        balance_amount=_d(row.get("balance_amount")),
        status=parse_invoice_status(row.get("status")),
        invoice_no=row.get("invoice_no"),
    )


def _customer_from_row(row: dict) -> CustomerBalance:
    return CustomerBalance(
        id=str(row["id"]),
        total_outstanding=_d(row.get("total_outstanding")),
        total_paid=_d(row.get("total_paid")),
        current_balance=_d(row.get("current_balance")),
    )


def _level_from_row(row: dict) -> StockLevelAggregate:
    return StockLevelAggregate(
        id=str(row["id"]),
        product_id=str(row["product_id"]),
        warehouse_id=str(row["warehouse_id"]),
        location_id=str(row["location_id"]),
        quantity=_d(row.get("quantity")),
    )


# ---------------------------------------------------------------------------
# Invoices
# ---------------------------------------------------------------------------


def lock_invoice(uow: UnitOfWork, invoice_id: str) -> InvoiceAggregate:
    row = uow.fetchone(
        """
        SELECT id, invoice_no, customer_id, total_amount, paid_amount, balance_amount, status
        FROM invoices
        WHERE id = %s
        FOR UPDATE
        """,
        (invoice_id,),
    )
    if not row:
        raise NotFoundError("invoice", invoice_id)
    return _invoice_from_row(row)


def save_invoice(uow: UnitOfWork, invoice: InvoiceAggregate) -> dict:
    return uow.fetchone(
        """
        UPDATE invoices
        SET paid_amount = %s,
            balance_amount = %s,
            status = %s,
            paid_date = CASE WHEN %s = 'PAID' THEN COALESCE(paid_date, now()) ELSE paid_date END,
            updated_at = now()
        WHERE id = %s
        RETURNING id, invoice_no, customer_id, total_amount, paid_amount, balance_amount, status, paid_date
        """,
        (
            invoice.paid_amount,
            invoice.balance_amount,
            invoice.status.value,
            invoice.status.value,
            invoice.id,
        ),
    )


def open_invoice(
    uow: UnitOfWork,
    *,
    invoice_no: str,
    customer_id: str,
    total_amount: Decimal,
    issue_date: date,
    description: Optional[str] = None,
) -> InvoiceAggregate:
    total = q_money(total_amount)
    status = derive_invoice_status(InvoiceStatus.SENT, ZERO, total)
    row = uow.fetchone(
        """
        INSERT INTO invoices
          (id, invoice_no, customer_id, total_amount, paid_amount, balance_amount, status, issue_date, due_date, description)
        VALUES
          (gen_random_uuid(), %s, %s, %s, 0, %s, %s, %s, %s, %s)
        RETURNING id, invoice_no, customer_id, total_amount, paid_amount, balance_amount, status, paid_date
        """,
        (invoice_no, customer_id, total, total, status.value, issue_date, issue_date, description),
    )
    return _invoice_from_row(row)


# ---------------------------------------------------------------------------
# Customers
# ---------------------------------------------------------------------------


def lock_customer(uow: UnitOfWork, customer_id: str) -> CustomerBalance:
    row = uow.fetchone(
        """
        SELECT id, total_outstanding, total_paid, current_balance
        FROM customers
        WHERE id = %s
        FOR UPDATE
        """,
        (customer_id,),
    )
    if not row:
        raise NotFoundError("customer", customer_id)
    return _customer_from_row(row)


def save_customer(uow: UnitOfWork, customer: CustomerBalance) -> dict:
    return uow.fetchone(
        """
        UPDATE customers
        SET total_outstanding = %s,
            total_paid = %s,
            current_balance = %s
        WHERE id = %s
        RETURNING id, total_outstanding, total_paid, current_balance
        """,
        (customer.total_outstanding, customer.total_paid, customer.current_balance, customer.id),
    )


def require_customer(uow: UnitOfWork, customer_id: str) -> str:
    row = uow.fetchone("SELECT id FROM customers WHERE id = %s", (customer_id,))
    if not row:
        raise NotFoundError("customer", customer_id)
    return str(row["id"])


def ensure_walkin_customer(uow: UnitOfWork, customer_code: str) -> str:
    uow.execute(
        """
        INSERT INTO customers (id, customer_code, name, is_active)
        VALUES (gen_random_uuid(), %s, 'Walk-in Customer', true)
        ON CONFLICT (customer_code) DO NOTHING
        """,
        (customer_code,),
    )
    row = uow.fetchone(
        """
        SELECT id
        FROM customers
        WHERE customer_code = %s
        """,
        (customer_code,),
    )
    if not row:
        raise NotFoundError("customer", customer_code)
    return str(row["id"])


# ---------------------------------------------------------------------------
# Products and stock levels
# ---------------------------------------------------------------------------


def get_location(uow: UnitOfWork, location_id: str) -> dict:
    row = uow.fetchone(
        """
        SELECT id, warehouse_id, is_active
        FROM warehouse_locations
        WHERE id = %s
        """,
        (location_id,),
    )
    if not row:
        raise NotFoundError("location", location_id)
    if row.get("is_active") is False:
        raise InvalidStateError("location is inactive", location_id=str(location_id))
    return row


def get_product(uow: UnitOfWork, product_id: str) -> dict:
    row = uow.fetchone(
        """
        SELECT id, price, quantity
        FROM products
        WHERE id = %s
        """,
        (product_id,),
    )
    if not row:
        raise NotFoundError("product", product_id)
    return row


def get_products(uow: UnitOfWork, product_ids: list) -> Dict[str, dict]:
    ids = sorted({str(x) for x in product_ids})
    rows = uow.fetchall(
        """
        SELECT id, price, quantity
        FROM products
        WHERE id = ANY(%s::uuid[])
        """,
        (ids,),
    )
    by_id = {str(r["id"]): r for r in rows}
    for pid in ids:
        if pid not in by_id:
            raise NotFoundError("product", pid)
    return by_id


def increment_product_quantity(uow: UnitOfWork, product_id: str, delta: Decimal) -> Decimal:
    row = uow.fetchone(
        """
        UPDATE products
        SET quantity = quantity + %s,
            updated_at = now()
        WHERE id = %s
        RETURNING id, quantity
        """,
        (q_qty(delta), product_id),
    )
    if not row:
        raise NotFoundError("product", product_id)
    return _d(row["quantity"])


def lock_stock_levels(uow: UnitOfWork, product_id: str, warehouse_by_location: Dict[str, str]) -> Dict[str, StockLevelAggregate]:
    """
    Lock the (product, location) rows, creating empty rows on first use.

    Rows are locked in location-id order so two transfers moving the same product in
    opposite directions acquire locks in the same order and cannot deadlock.
    """
    levels: Dict[str, StockLevelAggregate] = {}
    for location_id in sorted(warehouse_by_location):
        uow.execute(
            """
            INSERT INTO stock_levels (id, product_id, warehouse_id, location_id, quantity)
            VALUES (gen_random_uuid(), %s, %s, %s, 0)
            ON CONFLICT (product_id, location_id) DO NOTHING
            """,
            (product_id, warehouse_by_location[location_id], location_id),
        )
        row = uow.fetchone(
            """
            SELECT id, product_id, warehouse_id, location_id, quantity
            FROM stock_levels
            WHERE product_id = %s AND location_id = %s
            FOR UPDATE
            """,
            (product_id, location_id),
        )
        if not row:
            raise NotFoundError("stock level", f"{product_id}@{location_id}")
        levels[location_id] = _level_from_row(row)
    return levels


def save_stock_level(uow: UnitOfWork, level: StockLevelAggregate) -> dict:
    return uow.fetchone(
        """
        UPDATE stock_levels
        SET quantity = %s,
            updated_at = now()
        WHERE id = %s
        RETURNING id, product_id, warehouse_id, location_id, quantity, updated_at
        """,
        (level.quantity, level.id),
    )
