"""Authentication and authorization helpers.

Accounts live in the surrounding application; this service only verifies the
session tokens it issues.

Provides:
- JWT creation and verification (PyJWT)
- Helpers for reading the current user and role off the request
"""

from __future__ import annotations

import os
import time
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt
from fastapi import HTTPException, Request, Response

# ---------------------------------------------------------------------------
# JWT helpers
# ---------------------------------------------------------------------------

_JWT_SECRET_ENV = "JWT_SECRET"
_JWT_ALGORITHM = "HS256"
_JWT_LIFETIME_HOURS = 24
_JWT_COOKIE_NAME = "tree_session"
_JWT_REFRESH_FRACTION = 0.5  # issue new token when >50 % of lifetime has passed


def _get_jwt_secret() -> str:
    secret = os.environ.get(_JWT_SECRET_ENV, "")
    if not secret:
        # Development fallback; set JWT_SECRET in production.
        secret = "dev-secret-change-me"
    return secret


def create_jwt(user_id: str, email: str, role: str = "user") -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "email": email,
        "role": role,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(hours=_JWT_LIFETIME_HOURS)).timestamp()),
    }
    return jwt.encode(payload, _get_jwt_secret(), algorithm=_JWT_ALGORITHM)


def decode_jwt(token: str) -> dict[str, Any]:
    """Decode and verify a JWT.  Raises ``jwt.PyJWTError`` on failure."""
    return jwt.decode(token, _get_jwt_secret(), algorithms=[_JWT_ALGORITHM])


def set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=_JWT_COOKIE_NAME,
        value=token,
        httponly=True,
        samesite="lax",
        max_age=_JWT_LIFETIME_HOURS * 3600,
        path="/",
    )


def _should_refresh(claims: dict[str, Any]) -> bool:
    """Return True when >50 % of the token lifetime has elapsed."""
    iat = claims.get("iat", 0)
    exp = claims.get("exp", 0)
    if not iat or not exp:
        return False
    lifetime = exp - iat
    if lifetime <= 0:
        return False
    elapsed = time.time() - iat
    return elapsed > (lifetime * _JWT_REFRESH_FRACTION)


def _token_from_request(request: Request) -> str | None:
    header = request.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        token = header[7:].strip()
        if token:
            return token
    return request.cookies.get(_JWT_COOKIE_NAME) or None


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------


def get_current_user(request: Request) -> dict[str, Any]:
    """Extract the authenticated user from ``request.state`` (set by middleware).

    Raises 401 if not authenticated.
    """
    user = getattr(request.state, "user", None)
    if not user:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


def is_admin(request: Request) -> bool:
    user = getattr(request.state, "user", None) or {}
    return user.get("role") == "admin"

