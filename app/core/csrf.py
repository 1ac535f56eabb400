# app/core/csrf.py
"""
Double-submit CSRF tokens.

The token is a short HS256 JWT (random nonce + expiry) set as an httpOnly
cookie and echoed by the client in a header. A request passes when both are
present, identical, and the signature/expiry check succeeds.
"""
from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from app.core.config import Settings

_ALGORITHM = "HS256"
_PURPOSE = "csrf"


def issue_csrf_token(settings: Settings, *, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    payload = {
        "nonce": secrets.token_hex(32),
        "purpose": _PURPOSE,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=settings.csrf_max_age_seconds)).timestamp()),
    }
    return jwt.encode(payload, settings.csrf_secret, algorithm=_ALGORITHM)


def verify_csrf_token(settings: Settings, token: str) -> bool:
    try:
        claims = jwt.decode(token, settings.csrf_secret, algorithms=[_ALGORITHM])
    except JWTError:
        return False
    return claims.get("purpose") == _PURPOSE


def check_csrf(settings: Settings, header_token: Optional[str], cookie_token: Optional[str]) -> Optional[str]:
    """
    Returns None when the request passes, else the rejection reason.
    """
    if not header_token:
        return "CSRF token missing"
    if not cookie_token:
        return "CSRF cookie missing"
    if not secrets.compare_digest(header_token, cookie_token):
        return "CSRF token mismatch"
    if not verify_csrf_token(settings, cookie_token):
        return "Invalid CSRF token"
    return None
