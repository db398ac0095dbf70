import hashlib
import hmac
from typing import Optional


def hash_session_token(token: str) -> str:
    # Store sessions as a one-way hash so a DB leak doesn't immediately grant access.
    # Prefix prevents "hash-as-token" replay.
    return "sha256:" + hashlib.sha256(token.encode("utf-8")).hexdigest()


def verify_session_token(token: str, token_hash: Optional[str]) -> bool:
    if not token or not token_hash:
        return False
    return hmac.compare_digest(hash_session_token(token), token_hash)
