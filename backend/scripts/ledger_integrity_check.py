#!/usr/bin/env python3
"""
Ledger integrity checks.

Verifies that denormalized totals (invoice paid/balance, stock levels, product
quantities) agree with the append-only payment and stock-movement journals.
Read-only; exits 0 when clean, 1 when findings exist, 2 on usage errors.
"""

from __future__ import annotations

import argparse
import os
import sys


# Allow running from repo root without installing as a package.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from backend.app.db import get_conn  # noqa: E402
from backend.app.integrity import run_checks  # noqa: E402


def _parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser()
    p.add_argument("--limit", type=int, default=200, help="Rows per check (default: 200)")
    return p.parse_args(argv)


def main(argv=None) -> int:
    args = _parse_args(argv)
    if args.limit is None or args.limit < 1:
        print("--limit must be >= 1", file=sys.stderr)
        return 2
    limit = min(int(args.limit), 5000)

    with get_conn() as conn:
        with conn.cursor() as cur:
            findings = run_checks(cur, limit)

    if not findings:
        print("OK: no integrity issues found.")
        return 0

    print(f"Found {len(findings)} issue(s):")
    for f in findings[:200]:
        print(f"- {f.kind}: {f.ref} ({f.id}) -> {f.message}")
    if len(findings) > 200:
        print(f"... plus {len(findings) - 200} more")
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
