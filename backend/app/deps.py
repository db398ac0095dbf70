from fastapi import Header, HTTPException, Depends, Cookie
from .actors import Actor
from .db import get_conn
from .security import hash_session_token, verify_session_token
from datetime import datetime, timezone
from typing import Optional


SESSION_COOKIE_NAME = "erp_session"


def _extract_session_token(authorization: Optional[str], cookie_token: Optional[str]) -> str:
    if authorization and authorization.lower().startswith("bearer "):
        return authorization.split(" ", 1)[1].strip()
    if cookie_token:
        return cookie_token
    raise HTTPException(status_code=401, detail="missing token")


def get_actor(
    authorization: Optional[str] = Header(None),
    cookie_token: Optional[str] = Cookie(None, alias=SESSION_COOKIE_NAME),
) -> Actor:
    token = _extract_session_token(authorization, cookie_token)
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT s.user_id, u.role, s.token_hash, s.expires_at, s.is_active,
                       COALESCE(array_agg(rp.permission_code) FILTER (WHERE rp.permission_code IS NOT NULL), '{}') AS permissions
                FROM auth_sessions s
                JOIN users u ON u.id = s.user_id
                LEFT JOIN role_permissions rp ON rp.role = u.role
                WHERE s.token_hash = %s
                GROUP BY s.user_id, u.role, s.token_hash, s.expires_at, s.is_active
                """,
                (hash_session_token(token),),
            )
            row = cur.fetchone()
    now = datetime.now(timezone.utc)
    if not row or not verify_session_token(token, row.get("token_hash")):
        raise HTTPException(status_code=401, detail="invalid token")
    if not row["is_active"] or row["expires_at"] < now:
        raise HTTPException(status_code=401, detail="invalid token")
    return Actor(
        user_id=str(row["user_id"]),
        role=row.get("role"),
        permissions=frozenset(row.get("permissions") or []),
    )


def require_permission(code: str):
    # The engine trusts the actor it is given; this is where the permission check happens.
    def _dep(actor: Actor = Depends(get_actor)) -> Actor:
        if not actor.has_permission(code):
            raise HTTPException(status_code=403, detail="permission denied")
        return actor
    return _dep
