from __future__ import annotations

import json
from typing import Any, Optional, Protocol

from .db import get_conn
from .logs import json_log


class AuditSink(Protocol):
    def __call__(self, action: str, *, entity_type: str, entity_id: Any, user_id: Optional[str], details: Optional[dict] = None) -> None:
        ...


def record_audit_event(action: str, *, entity_type: str, entity_id: Any, user_id: Optional[str], details: Optional[dict] = None) -> None:
    """
    Fire-and-forget audit write on its own connection.

    Registered with `UnitOfWork.after_commit`, so it runs only after the ledger
    mutation is durable and never while ledger row locks are held.
    """
    try:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO audit_logs (id, user_id, action, entity_type, entity_id, details)
                    VALUES (gen_random_uuid(), %s, %s, %s, %s, %s::jsonb)
                    """,
                    (user_id, action, entity_type, str(entity_id) if entity_id is not None else None, json.dumps(details or {}, default=str)),
                )
    except Exception as exc:
        json_log("warn", "audit.write_failed", action=action, entity_type=entity_type, entity_id=entity_id, error=str(exc))
