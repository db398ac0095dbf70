import copy
import itertools
import json
import os
import sys
import threading
import time
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from psycopg import errors as pg_errors


# Allow running pytest from either the repo root or from within `backend/`.
# Tests import `backend.*`, which requires the repo root on sys.path.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)


def _sql(text) -> str:
    return " ".join(str(text or "").lower().split())


def _pick(row, cols):
    return {c: row.get(c) for c in cols}


def _dec(v) -> Decimal:
    return Decimal(str(v if v is not None else 0))


INVOICE_COLS = ("id", "invoice_no", "customer_id", "total_amount", "paid_amount", "balance_amount", "status", "paid_date")
CUSTOMER_COLS = ("id", "total_outstanding", "total_paid", "current_balance")
LEVEL_COLS = ("id", "product_id", "warehouse_id", "location_id", "quantity", "updated_at")
PAYMENT_COLS = (
    "id", "invoice_id", "customer_id", "amount", "payment_date", "method", "reference",
    "status", "notes", "created_by", "created_at",
)
MOVEMENT_COLS = (
    "id", "product_id", "warehouse_id", "location_id", "quantity", "movement_type",
    "reference_type", "reference_id", "notes", "created_by", "created_at",
)
ORDER_COLS = (
    "id", "order_no", "customer_id", "subtotal", "tax_pct", "tax_amount", "discount_pct", "discount_amount",
    "total_amount", "status", "created_by", "created_at",
)
ORDER_DONE_COLS = (
    "id", "order_no", "customer_id", "invoice_id", "location_id", "total_amount", "amount_paid",
    "payment_method", "payment_status", "status", "completed_at",
)
ITEM_COLS = ("id", "order_id", "product_id", "quantity", "catalog_price", "unit_price", "price_override", "total_price")
RETURN_COLS = (
    "id", "return_no", "return_type", "status", "customer_id", "total_amount", "restock_fee", "refund_amount",
    "created_by", "created_at",
)
RETURN_DONE_COLS = ("id", "return_no", "return_type", "status", "approved_by", "approved_at", "completed_at")
RETURN_ITEM_COLS = (
    "id", "return_id", "product_id", "location_id", "quantity", "unit_price", "total_price", "condition", "restockable",
)

TABLES = (
    "customers",
    "invoices",
    "payments",
    "warehouses",
    "warehouse_locations",
    "products",
    "stock_levels",
    "stock_movements",
    "pos_orders",
    "pos_order_items",
    "product_returns",
    "product_return_items",
    "audit_logs",
)


class _Tx:
    def __init__(self, lock_timeout: float):
        self.undo = []
        self.locks = set()
        self.lock_timeout = lock_timeout


class FakeDb:
    """
    In-memory stand-in for the PostgreSQL tables the ledger touches.

    Understands exactly the statements the app issues (matched on normalized SQL)
    and models what the engine relies on: row locks held until commit/rollback,
    `lock_timeout` via set_config (expiry raises LockNotAvailable), undo on
    rollback, and autocommit for statements outside a transaction.
    """

    def __init__(self, lock_timeout: float = 2.0):
        self.tables = {name: {} for name in TABLES}
        self.default_lock_timeout = lock_timeout
        self.statements = []
        self.commits = 0
        self.rollbacks = 0
        # Substring of a statement to fail with a plain (non-psycopg) error.
        self.fail_on = None
        self._cond = threading.Condition(threading.RLock())
        self._owners = {}
        self._ticks = itertools.count(1)
        self._epoch = datetime(2026, 1, 1, tzinfo=timezone.utc)

    # -- connection surface ---------------------------------------------------

    def connect(self):
        return FakeConn(self)

    def _now(self):
        return self._epoch + timedelta(milliseconds=next(self._ticks))

    # -- locks and transactions -----------------------------------------------

    def _lock(self, tx, key):
        deadline = time.monotonic() + tx.lock_timeout
        with self._cond:
            while True:
                owner = self._owners.get(key)
                if owner is None or owner is tx:
                    self._owners[key] = tx
                    tx.locks.add(key)
                    return
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise pg_errors.LockNotAvailable("canceling statement due to lock timeout")
                self._cond.wait(remaining)

    def _release(self, tx):
        with self._cond:
            for key in tx.locks:
                if self._owners.get(key) is tx:
                    del self._owners[key]
            tx.locks.clear()
            self._cond.notify_all()

    def _commit(self, tx):
        with self._cond:
            tx.undo.clear()
            self.commits += 1
            self._release(tx)

    def _rollback(self, tx):
        with self._cond:
            for table, key, old in reversed(tx.undo):
                if old is None:
                    self.tables[table].pop(key, None)
                else:
                    self.tables[table][key] = old
            tx.undo.clear()
            self.rollbacks += 1
            self._release(tx)

    def _write(self, tx, table, key, row):
        old = self.tables[table].get(key)
        tx.undo.append((table, key, copy.deepcopy(old) if old is not None else None))
        self.tables[table][key] = row

    # -- statement execution --------------------------------------------------

    def execute(self, conn, sql, params):
        text = _sql(sql)
        params = list(params or [])
        with self._cond:
            self.statements.append(text)
            tx = conn.tx
            auto = tx is None
            if auto:
                tx = _Tx(self.default_lock_timeout)
            try:
                if self.fail_on and self.fail_on in text:
                    raise RuntimeError(f"injected failure on: {self.fail_on}")
                rows = self._dispatch(tx, text, params)
            except BaseException:
                if auto:
                    self._rollback(tx)
                raise
            if auto:
                self._commit(tx)
            return [dict(r) for r in rows]

    def _locked_row(self, tx, table, key, lock_key=None):
        if key not in self.tables[table]:
            return None
        self._lock(tx, lock_key or (table, key))
        # Re-read: another transaction may have committed while we waited.
        return self.tables[table].get(key)

    def _find_level(self, product_id, location_id):
        for r in self.tables["stock_levels"].values():
            if r["product_id"] == product_id and r["location_id"] == location_id:
                return r
        return None

    def _dispatch(self, tx, text, p):
        t = self.tables

        if text.startswith("select set_config('lock_timeout'"):
            tx.lock_timeout = int(str(p[0]).rstrip("ms")) / 1000.0
            return [{"set_config": p[0]}]
        if text.startswith("select 1 as ok"):
            return [{"ok": 1}]

        # invoices
        if "from invoices where id = %s for update" in text:
            row = self._locked_row(tx, "invoices", str(p[0]))
            return [_pick(row, INVOICE_COLS)] if row else []
        if text.startswith("update invoices set paid_amount"):
            paid, balance, status, _status, inv_id = p
            row = self._locked_row(tx, "invoices", str(inv_id))
            if row is None:
                return []
            if _dec(balance) < 0 or _dec(paid) < 0:
                raise pg_errors.CheckViolation("invoices amount check")
            now = self._now()
            row = dict(row, paid_amount=_dec(paid), balance_amount=_dec(balance), status=status, updated_at=now)
            if status == "PAID" and row.get("paid_date") is None:
                row["paid_date"] = now
            self._write(tx, "invoices", row["id"], row)
            return [_pick(row, INVOICE_COLS)]
        if text.startswith("insert into invoices"):
            invoice_no, customer_id, total, balance, status, issue_date, due_date, description = p
            if any(r["invoice_no"] == invoice_no for r in t["invoices"].values()):
                raise pg_errors.UniqueViolation(f"duplicate invoice_no {invoice_no}")
            row = {
                "id": str(uuid.uuid4()),
                "invoice_no": invoice_no,
                "customer_id": customer_id,
                "total_amount": _dec(total),
                "paid_amount": Decimal("0"),
                "balance_amount": _dec(balance),
                "status": status,
                "issue_date": issue_date,
                "due_date": due_date,
                "paid_date": None,
                "description": description,
            }
            self._lock(tx, ("invoices", row["id"]))
            self._write(tx, "invoices", row["id"], row)
            return [_pick(row, INVOICE_COLS)]

        # customers
        if "from customers where id = %s for update" in text:
            row = self._locked_row(tx, "customers", str(p[0]))
            return [_pick(row, CUSTOMER_COLS)] if row else []
        if "from customers where id = %s" in text:
            row = t["customers"].get(str(p[0]))
            return [{"id": row["id"]}] if row else []
        if text.startswith("update customers set total_outstanding"):
            outstanding, paid, balance, cust_id = p
            row = self._locked_row(tx, "customers", str(cust_id))
            if row is None:
                return []
            row = dict(row, total_outstanding=_dec(outstanding), total_paid=_dec(paid), current_balance=_dec(balance))
            self._write(tx, "customers", row["id"], row)
            return [_pick(row, CUSTOMER_COLS)]
        if text.startswith("insert into customers") and "on conflict (customer_code) do nothing" in text:
            code = p[0]
            self._lock(tx, ("customer_code", code))
            if not any(r["customer_code"] == code for r in t["customers"].values()):
                row = {
                    "id": str(uuid.uuid4()),
                    "customer_code": code,
                    "name": "Walk-in Customer",
                    "is_active": True,
                    "total_outstanding": Decimal("0"),
                    "total_paid": Decimal("0"),
                    "current_balance": Decimal("0"),
                }
                self._write(tx, "customers", row["id"], row)
            return []
        if "from customers where customer_code = %s" in text:
            return [{"id": r["id"]} for r in t["customers"].values() if r["customer_code"] == p[0]]

        # locations / products
        if "from warehouse_locations where id = %s" in text:
            row = t["warehouse_locations"].get(str(p[0]))
            return [_pick(row, ("id", "warehouse_id", "is_active"))] if row else []
        if "from products where id = any(" in text:
            ids = [str(x) for x in p[0]]
            return [_pick(t["products"][i], ("id", "price", "quantity")) for i in ids if i in t["products"]]
        if "from products where id = %s" in text:
            row = t["products"].get(str(p[0]))
            return [_pick(row, ("id", "price", "quantity"))] if row else []
        if text.startswith("update products set quantity = quantity + %s"):
            delta, product_id = p
            row = self._locked_row(tx, "products", str(product_id))
            if row is None:
                return []
            row = dict(row, quantity=_dec(row["quantity"]) + _dec(delta), updated_at=self._now())
            self._write(tx, "products", row["id"], row)
            return [_pick(row, ("id", "quantity"))]

        # stock levels
        if text.startswith("insert into stock_levels") and "on conflict (product_id, location_id) do nothing" in text:
            product_id, warehouse_id, location_id = (str(x) for x in p)
            self._lock(tx, ("stock_level", product_id, location_id))
            if self._find_level(product_id, location_id) is None:
                row = {
                    "id": str(uuid.uuid4()),
                    "product_id": product_id,
                    "warehouse_id": warehouse_id,
                    "location_id": location_id,
                    "quantity": Decimal("0"),
                    "updated_at": self._now(),
                }
                self._write(tx, "stock_levels", row["id"], row)
            return []
        if "from stock_levels where product_id = %s and location_id = %s for update" in text:
            product_id, location_id = (str(x) for x in p)
            self._lock(tx, ("stock_level", product_id, location_id))
            row = self._find_level(product_id, location_id)
            return [_pick(row, LEVEL_COLS)] if row else []
        if text.startswith("update stock_levels set quantity = %s"):
            qty, level_id = p
            row = t["stock_levels"].get(str(level_id))
            if row is None:
                return []
            self._lock(tx, ("stock_level", row["product_id"], row["location_id"]))
            row = dict(t["stock_levels"][row["id"]], quantity=_dec(qty), updated_at=self._now())
            self._write(tx, "stock_levels", row["id"], row)
            return [_pick(row, LEVEL_COLS)]

        # journals
        if text.startswith("insert into payments"):
            invoice_id, customer_id, amount, payment_date, method, reference, status, notes, created_by = p
            row = {
                "id": str(uuid.uuid4()),
                "invoice_id": invoice_id,
                "customer_id": customer_id,
                "amount": _dec(amount),
                "payment_date": payment_date,
                "method": method,
                "reference": reference,
                "status": status,
                "notes": notes,
                "created_by": created_by,
                "created_at": self._now(),
            }
            self._write(tx, "payments", row["id"], row)
            return [_pick(row, PAYMENT_COLS)]
        if text.startswith("insert into stock_movements"):
            product_id, warehouse_id, location_id, qty, mtype, ref_type, ref_id, notes, created_by = p
            row = {
                "id": str(uuid.uuid4()),
                "product_id": product_id,
                "warehouse_id": warehouse_id,
                "location_id": location_id,
                "quantity": _dec(qty),
                "movement_type": mtype,
                "reference_type": ref_type,
                "reference_id": ref_id,
                "notes": notes,
                "created_by": created_by,
                "created_at": self._now(),
            }
            self._write(tx, "stock_movements", row["id"], row)
            return [_pick(row, MOVEMENT_COLS)]
        if "from payments where invoice_id = %s" in text:
            invoice_id, limit = p
            rows = [r for r in t["payments"].values() if r["invoice_id"] == invoice_id]
            rows.sort(key=lambda r: r["created_at"], reverse=True)
            return [_pick(r, PAYMENT_COLS) for r in rows[:limit]]
        if "from stock_movements where 1=1" in text:
            rest = list(p)
            rows = list(t["stock_movements"].values())
            if "and product_id = %s" in text:
                pid = rest.pop(0)
                rows = [r for r in rows if r["product_id"] == pid]
            if "and location_id = %s" in text:
                loc = rest.pop(0)
                rows = [r for r in rows if r["location_id"] == loc]
            rows.sort(key=lambda r: r["created_at"], reverse=True)
            return [_pick(r, MOVEMENT_COLS) for r in rows[: rest[0]]]

        # audit
        if text.startswith("insert into audit_logs"):
            user_id, action, entity_type, entity_id, details = p
            row = {
                "id": str(uuid.uuid4()),
                "user_id": user_id,
                "action": action,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "details": json.loads(details),
            }
            self._write(tx, "audit_logs", row["id"], row)
            return []

        # pos orders
        if text.startswith("insert into pos_orders"):
            order_no, customer_id, subtotal, tax_pct, tax, discount_pct, discount, total, status, created_by = p
            row = {
                "id": str(uuid.uuid4()),
                "order_no": order_no,
                "customer_id": customer_id,
                "subtotal": _dec(subtotal),
                "tax_pct": _dec(tax_pct),
                "tax_amount": _dec(tax),
                "discount_pct": _dec(discount_pct),
                "discount_amount": _dec(discount),
                "total_amount": _dec(total),
                "status": status,
                "payment_method": None,
                "amount_paid": Decimal("0"),
                "payment_status": "PENDING",
                "invoice_id": None,
                "location_id": None,
                "created_by": created_by,
                "created_at": self._now(),
                "completed_at": None,
            }
            self._lock(tx, ("pos_orders", row["id"]))
            self._write(tx, "pos_orders", row["id"], row)
            return [_pick(row, ORDER_COLS)]
        if text.startswith("insert into pos_order_items"):
            order_id, product_id, qty, catalog_price, unit_price, override, total_price = p
            row = {
                "id": str(uuid.uuid4()),
                "order_id": order_id,
                "product_id": product_id,
                "quantity": _dec(qty),
                "catalog_price": _dec(catalog_price),
                "unit_price": _dec(unit_price),
                "price_override": bool(override),
                "total_price": _dec(total_price),
            }
            self._write(tx, "pos_order_items", row["id"], row)
            return [_pick(row, ITEM_COLS)]
        if "from pos_orders where id = %s for update" in text:
            row = self._locked_row(tx, "pos_orders", str(p[0]))
            return [_pick(row, ("id", "order_no", "customer_id", "total_amount", "status"))] if row else []
        if "from pos_order_items where order_id = %s" in text:
            rows = [r for r in t["pos_order_items"].values() if r["order_id"] == p[0]]
            rows.sort(key=lambda r: r["product_id"])
            return [_pick(r, ("product_id", "quantity")) for r in rows]
        if text.startswith("update pos_orders set status"):
            status, method, amount_paid, payment_status, customer_id, invoice_id, location_id, order_id = p
            row = self._locked_row(tx, "pos_orders", str(order_id))
            if row is None:
                return []
            row = dict(
                row,
                status=status,
                payment_method=method,
                amount_paid=_dec(amount_paid),
                payment_status=payment_status,
                customer_id=customer_id,
                invoice_id=invoice_id,
                location_id=location_id,
                completed_at=self._now(),
            )
            self._write(tx, "pos_orders", row["id"], row)
            return [_pick(row, ORDER_DONE_COLS)]

        # product returns
        if text.startswith("insert into product_returns"):
            (return_no, return_type, status, customer_id, ref_type, ref_id, reason,
             total, fee, refund, notes, created_by) = p
            if _dec(refund) < 0:
                raise pg_errors.CheckViolation("product_returns refund check")
            row = {
                "id": str(uuid.uuid4()),
                "return_no": return_no,
                "return_type": return_type,
                "status": status,
                "customer_id": customer_id,
                "reference_type": ref_type,
                "reference_id": ref_id,
                "reason": reason,
                "total_amount": _dec(total),
                "restock_fee": _dec(fee),
                "refund_amount": _dec(refund),
                "notes": notes,
                "created_by": created_by,
                "approved_by": None,
                "approved_at": None,
                "completed_at": None,
                "created_at": self._now(),
            }
            self._lock(tx, ("product_returns", row["id"]))
            self._write(tx, "product_returns", row["id"], row)
            return [_pick(row, RETURN_COLS)]
        if text.startswith("insert into product_return_items"):
            return_id, product_id, location_id, qty, unit_price, total_price, condition, restockable = p
            if _dec(qty) <= 0:
                raise pg_errors.CheckViolation("product_return_items quantity check")
            row = {
                "id": str(uuid.uuid4()),
                "return_id": return_id,
                "product_id": product_id,
                "location_id": location_id,
                "quantity": _dec(qty),
                "unit_price": _dec(unit_price),
                "total_price": _dec(total_price),
                "condition": condition,
                "restockable": bool(restockable),
            }
            self._write(tx, "product_return_items", row["id"], row)
            return [_pick(row, RETURN_ITEM_COLS)]
        if "from product_returns where id = %s for update" in text:
            row = self._locked_row(tx, "product_returns", str(p[0]))
            return [_pick(row, ("id", "return_no", "return_type", "status"))] if row else []
        if "from product_return_items where return_id = %s" in text:
            rows = [r for r in t["product_return_items"].values() if r["return_id"] == p[0]]
            rows.sort(key=lambda r: (r["product_id"], r["location_id"] or ""))
            return [_pick(r, ("product_id", "location_id", "quantity", "restockable")) for r in rows]
        if text.startswith("update product_returns set status"):
            status, approved_by, approved_at, completed_at, return_id = p
            row = self._locked_row(tx, "product_returns", str(return_id))
            if row is None:
                return []
            row = dict(
                row,
                status=status,
                approved_by=approved_by if approved_by is not None else row["approved_by"],
                approved_at=approved_at if approved_at is not None else row["approved_at"],
                completed_at=completed_at if completed_at is not None else row["completed_at"],
            )
            self._write(tx, "product_returns", row["id"], row)
            return [_pick(row, RETURN_DONE_COLS)]

        raise AssertionError(f"unexpected SQL in fake db: {text}")

    # -- seeding --------------------------------------------------------------

    def add_customer(self, code=None, total_outstanding="0", total_paid="0"):
        cid = str(uuid.uuid4())
        out, paid = _dec(total_outstanding), _dec(total_paid)
        self.tables["customers"][cid] = {
            "id": cid,
            "customer_code": code or f"CUST-{cid[:8]}",
            "name": "Test Customer",
            "is_active": True,
            "total_outstanding": out,
            "total_paid": paid,
            "current_balance": out - paid,
        }
        return cid

    def add_invoice(self, total, status="SENT", customer_id=None, balance=None):
        iid = str(uuid.uuid4())
        total = _dec(total)
        self.tables["invoices"][iid] = {
            "id": iid,
            "invoice_no": f"INV-{iid[:8]}",
            "customer_id": customer_id,
            "total_amount": total,
            "paid_amount": Decimal("0"),
            "balance_amount": total if balance is None else _dec(balance),
            "status": status,
            "paid_date": None,
        }
        return iid

    def add_location(self, warehouse_id=None, is_active=True):
        if warehouse_id is None:
            warehouse_id = str(uuid.uuid4())
            self.tables["warehouses"][warehouse_id] = {"id": warehouse_id, "code": f"WH-{warehouse_id[:6]}", "name": "Main"}
        lid = str(uuid.uuid4())
        self.tables["warehouse_locations"][lid] = {"id": lid, "warehouse_id": warehouse_id, "is_active": is_active}
        return lid

    def add_product(self, price="10.00", sku=None):
        pid = str(uuid.uuid4())
        self.tables["products"][pid] = {"id": pid, "sku": sku or f"SKU-{pid[:6]}", "price": _dec(price), "quantity": Decimal("0")}
        return pid

    def add_stock(self, product_id, location_id, quantity):
        """Seed on-hand stock the way the ledger would: level + opening movement + product total."""
        qty = _dec(quantity)
        loc = self.tables["warehouse_locations"][location_id]
        level = self._find_level(product_id, location_id)
        if level is None:
            level = {
                "id": str(uuid.uuid4()),
                "product_id": product_id,
                "warehouse_id": loc["warehouse_id"],
                "location_id": location_id,
                "quantity": Decimal("0"),
            }
            self.tables["stock_levels"][level["id"]] = level
        level["quantity"] += qty
        self.tables["products"][product_id]["quantity"] += qty
        mid = str(uuid.uuid4())
        self.tables["stock_movements"][mid] = {
            "id": mid,
            "product_id": product_id,
            "warehouse_id": loc["warehouse_id"],
            "location_id": location_id,
            "quantity": qty,
            "movement_type": "ADJUSTMENT",
            "reference_type": "OPENING",
            "reference_id": None,
            "notes": "opening stock",
            "created_by": None,
            "created_at": self._now(),
        }

    # -- inspection -----------------------------------------------------------

    def rows(self, table, **where):
        return [r for r in self.tables[table].values() if all(r.get(k) == v for k, v in where.items())]

    def level(self, product_id, location_id) -> Decimal:
        row = self._find_level(product_id, location_id)
        return row["quantity"] if row else Decimal("0")

    def ledger_problems(self):
        problems = []
        for inv in self.tables["invoices"].values():
            expected = max(inv["total_amount"] - inv["paid_amount"], Decimal("0"))
            if inv["balance_amount"] != expected:
                problems.append(("invoice_balance", inv["id"]))
            paid = sum((p["amount"] for p in self.rows("payments", invoice_id=inv["id"])), Decimal("0"))
            if paid != inv["paid_amount"]:
                problems.append(("invoice_payments", inv["id"]))
        for lvl in self.tables["stock_levels"].values():
            moves = self.rows("stock_movements", product_id=lvl["product_id"], location_id=lvl["location_id"])
            if sum((m["quantity"] for m in moves), Decimal("0")) != lvl["quantity"]:
                problems.append(("stock_level_movements", lvl["id"]))
            if lvl["quantity"] < 0:
                problems.append(("stock_level_negative", lvl["id"]))
        for prod in self.tables["products"].values():
            levels = self.rows("stock_levels", product_id=prod["id"])
            if sum((lv["quantity"] for lv in levels), Decimal("0")) != prod["quantity"]:
                problems.append(("product_quantity", prod["id"]))
        return problems


class FakeCursor:
    def __init__(self, conn):
        self._conn = conn
        self._rows = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, sql, params=None):
        self._rows = self._conn.db.execute(self._conn, sql, params)

    def fetchone(self):
        return self._rows[0] if self._rows else None

    def fetchall(self):
        return list(self._rows)


class FakeConn:
    def __init__(self, db: FakeDb):
        self.db = db
        self.tx = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        # Returned to the pool: anything left open is rolled back.
        if self.tx is not None:
            tx, self.tx = self.tx, None
            self.db._rollback(tx)
        return False

    @contextmanager
    def transaction(self):
        if self.tx is not None:
            raise AssertionError("nested transaction: savepoints are not used by the ledger")
        self.tx = _Tx(self.db.default_lock_timeout)
        try:
            yield self
        except BaseException:
            tx, self.tx = self.tx, None
            self.db._rollback(tx)
            raise
        tx, self.tx = self.tx, None
        self.db._commit(tx)

    def cursor(self):
        return FakeCursor(self)


class RecordingAudit:
    def __init__(self):
        self.events = []

    def __call__(self, action, *, entity_type, entity_id, user_id, details=None):
        self.events.append(
            {"action": action, "entity_type": entity_type, "entity_id": entity_id, "user_id": user_id, "details": details or {}}
        )


@pytest.fixture
def db():
    return FakeDb()


@pytest.fixture
def connect(db):
    return db.connect


@pytest.fixture
def audit():
    return RecordingAudit()
