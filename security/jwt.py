from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import jwt

from core.config import settings

ACCESS_TOKEN_EXPIRE_MINUTES = 15


def _encode(payload: Dict[str, Any], secret: str, minutes: int) -> str:
    now = datetime.now(timezone.utc)
    exp = now + timedelta(minutes=minutes)
    to_encode = {"iat": int(now.timestamp()), "exp": int(exp.timestamp()), **payload}
    return jwt.encode(to_encode, secret, algorithm=settings.JWT_ALG)


def create_access_token(sub: str, extra: Dict[str, Any] | None = None, minutes: int = ACCESS_TOKEN_EXPIRE_MINUTES) -> str:
    """Issue a token the way the authentication service does. Used by tests and local tooling."""
    payload = {"sub": sub, "type": "access"}
    if extra:
        payload.update(extra)
    return _encode(payload, settings.JWT_SECRET, minutes)


def decode_access(token: str) -> Dict[str, Any]:
    payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
    if payload.get("type") != "access":
        raise jwt.InvalidTokenError("Not an access token")
    return payload
