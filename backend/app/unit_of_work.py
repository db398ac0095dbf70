"""
Transaction scope for ledger mutations.

Two entry points:
- `begin()` / `run()` open a new scope: one pooled connection, one transaction,
  one cursor. Commit on normal exit, full rollback on any exception.
- `run_joined()` requires a scope the caller already owns and runs inside it
  (no nested transaction, no savepoint). Used when a stock adjustment or payment
  is one step of a larger mutation such as a POS checkout.

Functions that touch the store take the `UnitOfWork` as their first argument and
only borrow it for the duration of the call; the scope's owner decides commit.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Callable, Iterator, List, Optional, Tuple

from psycopg import errors as pg_errors

from .config import settings
from .db import get_conn
from .errors import ConflictRetryable, InternalError, LedgerError
from .logs import json_log

# SQLSTATE classes a caller may retry with fresh reads.
RETRYABLE_PG_ERRORS = (
    pg_errors.LockNotAvailable,
    pg_errors.SerializationFailure,
    pg_errors.DeadlockDetected,
)


class UnitOfWork:
    def __init__(self, conn, cur):
        self.conn = conn
        self.cur = cur
        self._active = True
        self._after_commit: List[Tuple[Callable[..., Any], tuple, dict]] = []

    @property
    def active(self) -> bool:
        return self._active

    def ensure_active(self) -> None:
        if not self._active:
            raise InternalError("unit of work is not active")

    def execute(self, sql: str, params=None):
        self.ensure_active()
        self.cur.execute(sql, params)
        return self.cur

    def fetchone(self, sql: str, params=None) -> Optional[dict]:
        return self.execute(sql, params).fetchone()

    def fetchall(self, sql: str, params=None) -> list:
        return list(self.execute(sql, params).fetchall() or [])

    def after_commit(self, fn: Callable[..., Any], *args, **kwargs) -> None:
        """
        Defer `fn` until the owning scope commits. Nothing is called if it rolls back.
        Used for side effects that must not hold ledger locks (audit sink, notifications).
        """
        self.ensure_active()
        self._after_commit.append((fn, args, kwargs))

    def _close(self) -> List[Tuple[Callable[..., Any], tuple, dict]]:
        self._active = False
        pending, self._after_commit = self._after_commit, []
        return pending


def _set_lock_timeout(cur, lock_timeout_ms: int) -> None:
    # `SET LOCAL lock_timeout = %s` is not valid with server-side parameters; set_config() is.
    # is_local=true scopes it to this transaction.
    cur.execute("SELECT set_config('lock_timeout', %s, true)", (f"{int(lock_timeout_ms)}ms",))


def _run_after_commit(pending) -> None:
    for fn, args, kwargs in pending:
        try:
            fn(*args, **kwargs)
        except Exception as exc:
            # The mutation is already durable; a failing side effect must not surface as a failed mutation.
            json_log("warn", "ledger.uow.after_commit_failed", callback=getattr(fn, "__name__", repr(fn)), error=str(exc))


@contextmanager
def begin(connect: Optional[Callable[[], Any]] = None, *, lock_timeout_ms: Optional[int] = None) -> Iterator[UnitOfWork]:
    connect = connect or get_conn
    timeout = lock_timeout_ms if lock_timeout_ms is not None else settings.lock_timeout_ms
    uow: Optional[UnitOfWork] = None
    try:
        with connect() as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    uow = UnitOfWork(conn, cur)
                    _set_lock_timeout(cur, timeout)
                    try:
                        yield uow
                    finally:
                        pending = uow._close()
    except LedgerError:
        raise
    except RETRYABLE_PG_ERRORS as exc:
        json_log("warn", "ledger.uow.conflict", error_class=type(exc).__name__, error=str(exc))
        raise ConflictRetryable() from exc
    except Exception as exc:
        json_log("error", "ledger.uow.internal_error", error_class=type(exc).__name__, error=str(exc))
        raise InternalError() from exc
    _run_after_commit(pending)


def run(fn: Callable[..., Any], *args, connect: Optional[Callable[[], Any]] = None, lock_timeout_ms: Optional[int] = None, **kwargs):
    """Open a new scope, call `fn(uow, *args, **kwargs)` inside it, commit, return its result."""
    with begin(connect, lock_timeout_ms=lock_timeout_ms) as uow:
        return fn(uow, *args, **kwargs)


def run_joined(uow: UnitOfWork, fn: Callable[..., Any], *args, **kwargs):
    """Call `fn` inside the caller's scope. Never commits or rolls back by itself."""
    if uow is None:
        raise InternalError("run_joined requires an active unit of work")
    uow.ensure_active()
    return fn(uow, *args, **kwargs)
