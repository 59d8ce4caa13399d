"""Request-level authentication middleware.

Reads the JWT from the ``Authorization: Bearer`` header or the session
cookie, validates it, and populates ``request.state.user`` (dict with id,
email, role). Unauthenticated requests to protected paths get a 401.
"""

from __future__ import annotations

import re

import jwt as pyjwt
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

try:
    from .auth import _should_refresh, _token_from_request, create_jwt, decode_jwt, set_session_cookie
except ImportError:  # pragma: no cover
    from auth import _should_refresh, _token_from_request, create_jwt, decode_jwt, set_session_cookie

# Paths that do NOT require authentication.
_PUBLIC_PATHS: list[re.Pattern[str]] = [
    re.compile(r"^/health$"),
    re.compile(r"^/docs$"),
    re.compile(r"^/openapi\.json$"),
    re.compile(r"^/favicon\.ico$"),
]


def _is_public(path: str) -> bool:
    for pat in _PUBLIC_PATHS:
        if pat.search(path):
            return True
    return False


class AuthMiddleware(BaseHTTPMiddleware):
    """Starlette middleware that enforces JWT-based authentication."""

    async def dispatch(self, request: Request, call_next) -> Response:
        if _is_public(request.url.path):
            return await call_next(request)

        token = _token_from_request(request)
        if not token:
            return JSONResponse({"detail": "Not authenticated"}, status_code=401)

        try:
            claims = decode_jwt(token)
        except pyjwt.ExpiredSignatureError:
            return JSONResponse({"detail": "Session expired"}, status_code=401)
        except pyjwt.PyJWTError:
            return JSONResponse({"detail": "Invalid session"}, status_code=401)

        request.state.user = {
            "id": str(claims["sub"]),
            "email": claims.get("email", ""),
            "role": claims.get("role", "user"),
        }

        response = await call_next(request)

        # Sliding window refresh for cookie sessions.
        if _should_refresh(claims) and not request.headers.get("authorization"):
            new_token = create_jwt(
                user_id=str(claims["sub"]),
                email=claims.get("email", ""),
                role=claims.get("role", "user"),
            )
            set_session_cookie(response, new_token)

        return response
