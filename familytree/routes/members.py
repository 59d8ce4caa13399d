from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request

try:
    from ..auth import get_current_user, is_admin
    from ..serialize import _person_to_public
    from ..store import StoreError, open_store
except ImportError:  # pragma: no cover
    # Support running with CWD=familytree (e.g., `python -m uvicorn main:app`).
    from auth import get_current_user, is_admin
    from serialize import _person_to_public
    from store import StoreError, open_store

router = APIRouter()


@router.get("/members")
async def list_members(
    request: Request,
    limit: int = Query(default=500, ge=1, le=5000),
    offset: int = Query(default=0, ge=0, le=1_000_000),
    privacy: str = "off",
) -> dict[str, Any]:
    """List members ordered by family name, for the focal-person selector."""

    get_current_user(request)
    skip_privacy = privacy.lower() != "on" or is_admin(request)
    try:
        async with open_store() as store:
            people = await store.list_persons(limit=limit, offset=offset)
    except StoreError:
        raise HTTPException(status_code=503, detail="store unavailable")

    results = [_person_to_public(p, skip_privacy=skip_privacy) for p in people]
    return {"results": results, "limit": limit, "offset": offset}


@router.get("/members/{person_id}")
async def get_member(person_id: str, request: Request, privacy: str = "off") -> dict[str, Any]:
    get_current_user(request)
    skip_privacy = privacy.lower() != "on" or is_admin(request)
    try:
        async with open_store() as store:
            person = await store.get_person(person_id)
    except StoreError:
        raise HTTPException(status_code=503, detail="store unavailable")

    if person is None:
        raise HTTPException(status_code=404, detail="member not found")
    return _person_to_public(person, skip_privacy=skip_privacy)
