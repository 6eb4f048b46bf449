# sigbatch/auth/__init__.py
import hashlib
from dataclasses import dataclass, field
from typing import List, Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from ..db import get_db
from ..models.apikey import ApiKey
from .keys import get_key_identity


@dataclass
class Caller:
    """The authenticated identity behind a request"""
    user_id: int
    scopes: List[str] = field(default_factory=list)
    key_id: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return "admin" in self.scopes


def _sha256(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def _extract_api_key(request: Request) -> Optional[str]:
    """Extract API key from request headers with multiple fallback formats"""
    # 1) Authorization: Bearer <key>
    auth = request.headers.get("Authorization", "")
    if auth:
        parts = auth.split(None, 1)
        if len(parts) == 2 and parts[0].lower() == "bearer":
            return parts[1].strip()
        # 2) Authorization: <key> (fallback)
        if len(parts) == 1 and parts[0] and parts[0].lower() != "bearer":
            return parts[0].strip()

    # 3) X-API-Key: <key>
    x_key = request.headers.get("X-API-Key")
    if x_key:
        return x_key.strip()

    return None


def require_key(req: Request, db: Session = Depends(get_db)) -> Caller:
    token = _extract_api_key(req)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing API key")

    identity = get_key_identity(token)
    if identity:
        scope, user_id = identity
        return Caller(user_id=user_id, scopes=[scope], key_id="env")

    key = db.query(ApiKey).filter(ApiKey.hash == _sha256(token), ApiKey.disabled == False).one_or_none()  # noqa: E712
    if not key:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")
    return Caller(user_id=key.user_id, scopes=list(key.scopes or []), key_id=key.key_id)


def require_admin(caller: Caller = Depends(require_key)) -> Caller:
    if caller.is_admin:
        return caller
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin scope required")


def ensure_self_or_admin(caller: Caller, owner_id: int) -> None:
    """Non-admin callers may only act on their own records"""
    if not caller.is_admin and caller.user_id != owner_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
