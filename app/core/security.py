"""
JWT access tokens for employee clients.

Tokens are issued by the login / OTP subsystem; this service only needs to
mint them (for that subsystem and for tests) and verify them.  Claims:
``sub`` = employee id, ``tid`` = tenant id, ``type`` = ``"access"``.
"""

from __future__ import annotations

import hmac
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from app.core.config import settings

_ALGORITHM = settings.ALGORITHM
_SECRET = settings.SECRET_KEY


# ── JWT tokens ──────────────────────────────────────────────────────
def create_access_token(
    employee_id: int,
    tenant_id: int,
    expires_delta: timedelta | None = None,
) -> str:
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    return jwt.encode(
        {"exp": expire, "sub": str(employee_id), "tid": str(tenant_id), "type": "access"},
        _SECRET,
        algorithm=_ALGORITHM,
    )


def decode_access_token(token: str) -> dict | None:
    """Return payload dict if *access* token is valid, else ``None``."""
    try:
        payload = jwt.decode(token, _SECRET, algorithms=[_ALGORITHM])
        if payload.get("type") != "access":
            return None
        return payload
    except JWTError:
        return None


# ── Cron key ────────────────────────────────────────────────────────
def verify_cron_key(candidate: str | None) -> bool:
    if not candidate:
        return False
    return hmac.compare_digest(candidate.encode(), settings.CRON_API_KEY.encode())
