from __future__ import annotations

import os

from fastapi import FastAPI

try:
    from .middleware import AuthMiddleware
    from .routes import members as members_routes
    from .routes import tree as tree_routes
    from .session import SessionRegistry
    from .store import open_store
except ImportError:  # pragma: no cover
    # Support running with CWD=familytree (e.g., `python -m uvicorn main:app`).
    from middleware import AuthMiddleware
    from routes import members as members_routes
    from routes import tree as tree_routes
    from session import SessionRegistry
    from store import open_store

_DEFAULT_MAX_SESSIONS = 256


def _max_sessions() -> int:
    raw = os.environ.get("TREE_MAX_SESSIONS")
    try:
        return int(raw) if raw else _DEFAULT_MAX_SESSIONS
    except ValueError:
        return _DEFAULT_MAX_SESSIONS


def create_app() -> FastAPI:
    app = FastAPI(title="Family Tree API", version="0.1.0")
    app.add_middleware(AuthMiddleware)
    app.state.tree_sessions = SessionRegistry(open_store, max_sessions=_max_sessions())

    app.include_router(tree_routes.router)
    app.include_router(members_routes.router)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()
