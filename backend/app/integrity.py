"""
Read-only consistency checks between ledger aggregates and their journals.

Each check returns the rows where a denormalized total disagrees with what the
append-only records imply:
- invoice balance != max(total - paid, 0)
- invoice paid amount != sum of its payments
- stock level quantity != sum of its movements (or is negative)
- product quantity != sum of its stock levels

Safe to run against production databases.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, List

from .money import ZERO


def d(v) -> Decimal:
    return Decimal(str(v if v is not None else 0))


@dataclass
class Finding:
    kind: str
    id: str
    ref: str
    message: str


def check_invoice_balances(cur, limit: int) -> List[Finding]:
    cur.execute(
        """
        SELECT id, invoice_no, total_amount, paid_amount, balance_amount
        FROM invoices
        WHERE balance_amount <> GREATEST(total_amount - paid_amount, 0)
        ORDER BY invoice_no
        LIMIT %s
        """,
        (limit,),
    )
    findings: List[Finding] = []
    for r in cur.fetchall():
        expected = max(d(r["total_amount"]) - d(r["paid_amount"]), ZERO)
        got = d(r["balance_amount"])
        if got != expected:
            findings.append(
                Finding(
                    kind="invoice_balance_mismatch",
                    id=str(r["id"]),
                    ref=str(r["invoice_no"] or r["id"]),
                    message=f"balance {got} != max(total {d(r['total_amount'])} - paid {d(r['paid_amount'])}, 0) = {expected}",
                )
            )
    return findings


def check_invoice_payments(cur, limit: int) -> List[Finding]:
    cur.execute(
        """
        SELECT i.id, i.invoice_no, i.paid_amount, COALESCE(SUM(p.amount), 0) AS payments_total
        FROM invoices i
        LEFT JOIN payments p ON p.invoice_id = i.id
        GROUP BY i.id, i.invoice_no, i.paid_amount
        HAVING i.paid_amount <> COALESCE(SUM(p.amount), 0)
        ORDER BY i.invoice_no
        LIMIT %s
        """,
        (limit,),
    )
    findings: List[Finding] = []
    for r in cur.fetchall():
        paid = d(r["paid_amount"])
        total = d(r["payments_total"])
        if paid != total:
            findings.append(
                Finding(
                    kind="invoice_payments_mismatch",
                    id=str(r["id"]),
                    ref=str(r["invoice_no"] or r["id"]),
                    message=f"paid_amount {paid} != sum(payments) {total}",
                )
            )
    return findings


def check_stock_levels(cur, limit: int) -> List[Finding]:
    cur.execute(
        """
        SELECT sl.id, sl.product_id, sl.location_id, sl.quantity, COALESCE(SUM(m.quantity), 0) AS movements_total
        FROM stock_levels sl
        LEFT JOIN stock_movements m
          ON m.product_id = sl.product_id AND m.location_id = sl.location_id
        GROUP BY sl.id, sl.product_id, sl.location_id, sl.quantity
        HAVING sl.quantity <> COALESCE(SUM(m.quantity), 0) OR sl.quantity < 0
        ORDER BY sl.product_id, sl.location_id
        LIMIT %s
        """,
        (limit,),
    )
    findings: List[Finding] = []
    for r in cur.fetchall():
        qty = d(r["quantity"])
        total = d(r["movements_total"])
        ref = f"{r['product_id']}@{r['location_id']}"
        if qty != total:
            findings.append(
                Finding(
                    kind="stock_level_movements_mismatch",
                    id=str(r["id"]),
                    ref=ref,
                    message=f"quantity {qty} != sum(movements) {total}",
                )
            )
        # Correction-flagged adjustments are the only way to get here.
        if qty < ZERO:
            findings.append(Finding(kind="stock_level_negative", id=str(r["id"]), ref=ref, message=f"quantity {qty} < 0"))
    return findings


def check_product_quantities(cur, limit: int) -> List[Finding]:
    cur.execute(
        """
        SELECT p.id, p.sku, p.quantity, COALESCE(SUM(sl.quantity), 0) AS levels_total
        FROM products p
        LEFT JOIN stock_levels sl ON sl.product_id = p.id
        GROUP BY p.id, p.sku, p.quantity
        HAVING p.quantity <> COALESCE(SUM(sl.quantity), 0)
        ORDER BY p.sku
        LIMIT %s
        """,
        (limit,),
    )
    findings: List[Finding] = []
    for r in cur.fetchall():
        qty = d(r["quantity"])
        total = d(r["levels_total"])
        if qty != total:
            findings.append(
                Finding(
                    kind="product_quantity_mismatch",
                    id=str(r["id"]),
                    ref=str(r.get("sku") or r["id"]),
                    message=f"quantity {qty} != sum(stock levels) {total}",
                )
            )
    return findings


CHECKS: List[Callable[..., List[Finding]]] = [
    check_invoice_balances,
    check_invoice_payments,
    check_stock_levels,
    check_product_quantities,
]


def run_checks(cur, limit: int = 200) -> List[Finding]:
    findings: List[Finding] = []
    for check in CHECKS:
        findings.extend(check(cur, limit))
    return findings
