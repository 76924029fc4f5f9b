# pharmapos/api/deps.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException
from jose import JWTError, jwt

from pharmapos.core.config import settings
from pharmapos.db.session import get_db  # noqa: F401  re-exported for routers


@dataclass(frozen=True)
class RequestContext:
    """Who is calling: the authenticated user and the pharmacy every query is scoped to."""
    pharmacy_id: int
    user_id: Optional[int]


# =========================================================
# AUTH HELPERS
# =========================================================
def _extract_bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1]
    return None


def _decode_token(raw_token: str) -> dict:
    try:
        return jwt.decode(raw_token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")


def current_context(authorization: Optional[str] = Header(None)) -> RequestContext:
    token = _extract_bearer(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    payload = _decode_token(token)
    pid = payload.get("pid")
    if not pid:
        raise HTTPException(status_code=401, detail="Missing pharmacy in token")

    sub = payload.get("sub")
    try:
        return RequestContext(pharmacy_id=int(pid), user_id=int(sub) if sub else None)
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token claims")
