from __future__ import annotations

import logging
from typing import Any, Awaitable, Optional, TypeVar

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, Field

try:
    from ..auth import get_current_user, is_admin
    from ..resolve import PersonNotFound, resolve_snapshot
    from ..serialize import _delta_to_public, _layout_to_public, _snapshot_to_public
    from ..session import ExpandResult, SessionRegistry, TreeSession
    from ..store import StoreError, open_store
except ImportError:  # pragma: no cover
    # Support running with CWD=familytree (e.g., `python -m uvicorn main:app`).
    from auth import get_current_user, is_admin
    from resolve import PersonNotFound, resolve_snapshot
    from serialize import _delta_to_public, _layout_to_public, _snapshot_to_public
    from session import ExpandResult, SessionRegistry, TreeSession
    from store import StoreError, open_store

log = logging.getLogger(__name__)

router = APIRouter()

T = TypeVar("T")


class PersonRequest(BaseModel):
    person_id: str = Field(min_length=1, max_length=64)


class ExpandRequest(PersonRequest):
    anchor: Optional[list[float]] = Field(default=None, min_length=3, max_length=3)


async def _guarded(aw: Awaitable[T]) -> T:
    """Map resolver/store failures onto HTTP errors."""
    try:
        return await aw
    except PersonNotFound:
        raise HTTPException(status_code=404, detail="member not found")
    except StoreError as e:
        log.error("store unavailable: %s", e)
        raise HTTPException(status_code=503, detail="store unavailable")


def _skip_privacy(request: Request, privacy: str) -> bool:
    # Redaction is opt-in (privacy=on) and never applies to admins.
    return privacy.lower() != "on" or is_admin(request)


def _registry(request: Request) -> SessionRegistry:
    return request.app.state.tree_sessions


def _session_or_404(request: Request, session_id: str) -> TreeSession:
    session = _registry(request).get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="session not found")
    return session


def _result_payload(session: TreeSession, result: ExpandResult, *, skip_privacy: bool) -> dict[str, Any]:
    return {
        "session_id": session.id,
        "root_id": session.root_id,
        "focus_id": session.focus_id,
        "generation": result.generation,
        "stale": result.stale,
        **_delta_to_public(result.delta, skip_privacy=skip_privacy),
    }


@router.get("/tree")
async def tree_snapshot(
    request: Request,
    person_id: Optional[str] = Query(default=None, max_length=64),
    privacy: str = "off",
) -> dict[str, Any]:
    """Return the one-hop family neighborhood of a member.

    Parents, full siblings, the parents' union, each parent's other unions
    (grouped by co-parent) and the member's own unions with their children.
    """

    get_current_user(request)
    if not person_id:
        raise HTTPException(status_code=400, detail="person_id required")

    async def _load():
        async with open_store() as store:
            return await resolve_snapshot(store, person_id)

    snap = await _guarded(_load())
    return _snapshot_to_public(snap, skip_privacy=_skip_privacy(request, privacy))


@router.post("/tree/sessions")
async def create_tree_session(body: PersonRequest, request: Request, privacy: str = "off") -> dict[str, Any]:
    """Open a tree view focused on ``person_id`` and return its first layout."""

    get_current_user(request)
    registry = _registry(request)
    session = registry.create()
    try:
        result = await _guarded(session.select_person(body.person_id))
    except HTTPException:
        registry.drop(session.id)
        raise
    return _result_payload(session, result, skip_privacy=_skip_privacy(request, privacy))


@router.get("/tree/sessions/{session_id}")
def get_tree_session(session_id: str, request: Request, privacy: str = "off") -> dict[str, Any]:
    """Return everything placed so far in a session."""

    get_current_user(request)
    session = _session_or_404(request, session_id)
    return {
        "session_id": session.id,
        "root_id": session.root_id,
        "focus_id": session.focus_id,
        "generation": session.generation,
        "history": list(session.history),
        **_layout_to_public(session.layout, skip_privacy=_skip_privacy(request, privacy)),
    }


@router.post("/tree/sessions/{session_id}/expand")
async def expand_tree_session(
    session_id: str,
    body: ExpandRequest,
    request: Request,
    privacy: str = "off",
) -> dict[str, Any]:
    """Reveal a member's neighborhood; only new nodes and edges are returned."""

    get_current_user(request)
    session = _session_or_404(request, session_id)
    anchor = tuple(body.anchor) if body.anchor else None
    result = await _guarded(session.expand(body.person_id, anchor))
    return _result_payload(session, result, skip_privacy=_skip_privacy(request, privacy))


@router.post("/tree/sessions/{session_id}/select")
async def select_tree_session(session_id: str, body: PersonRequest, request: Request, privacy: str = "off") -> dict[str, Any]:
    """Switch the focal member: the session's layout starts over."""

    get_current_user(request)
    session = _session_or_404(request, session_id)
    result = await _guarded(session.select_person(body.person_id))
    return _result_payload(session, result, skip_privacy=_skip_privacy(request, privacy))


@router.post("/tree/sessions/{session_id}/navigate")
async def navigate_tree_session(session_id: str, body: PersonRequest, request: Request, privacy: str = "off") -> dict[str, Any]:
    get_current_user(request)
    session = _session_or_404(request, session_id)
    result = await _guarded(session.navigate_to(body.person_id))
    return _result_payload(session, result, skip_privacy=_skip_privacy(request, privacy))


@router.post("/tree/sessions/{session_id}/back")
async def back_tree_session(session_id: str, request: Request, privacy: str = "off") -> dict[str, Any]:
    get_current_user(request)
    session = _session_or_404(request, session_id)
    result = await _guarded(session.navigate_back())
    if result is None:
        raise HTTPException(status_code=409, detail="no previous member")
    return _result_payload(session, result, skip_privacy=_skip_privacy(request, privacy))


@router.delete("/tree/sessions/{session_id}")
def delete_tree_session(session_id: str, request: Request) -> dict[str, Any]:
    get_current_user(request)
    if not _registry(request).drop(session_id):
        raise HTTPException(status_code=404, detail="session not found")
    return {"deleted": session_id}
