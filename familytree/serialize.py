from __future__ import annotations

from datetime import date
from typing import Any

try:
    from .layout import Edge, LayoutDelta, PersonNode, Position, TreeLayout, UnionNode
    from .models import Known, OtherUnion, OwnUnion, Person, Snapshot, Union
    from .names import PRIVATE_LABEL, _display_name
    from .privacy import _is_effectively_private
except ImportError:  # pragma: no cover
    # Support running with CWD=familytree (e.g., `python -m uvicorn main:app`).
    from layout import Edge, LayoutDelta, PersonNode, Position, TreeLayout, UnionNode
    from models import Known, OtherUnion, OwnUnion, Person, Snapshot, Union
    from names import PRIVATE_LABEL, _display_name
    from privacy import _is_effectively_private


def _iso(d: date | None) -> str | None:
    return d.isoformat() if d is not None else None


def _person_to_public(p: Person | None, *, skip_privacy: bool = False, today: date | None = None) -> dict[str, Any] | None:
    if p is None:
        return None

    if not skip_privacy and _is_effectively_private(
        is_private=p.is_private,
        birth_date=p.birth_date,
        death_date=p.death_date,
        today=today,
    ):
        return {
            "id": p.id,
            "type": "person",
            "display_name": PRIVATE_LABEL,
            "first_name": None,
            "last_name": None,
            "sex": None,
            "birth_date": None,
            "death_date": None,
            "birth_place": None,
            "father_id": None,
            "mother_id": None,
            "is_deceased": None,
            "is_private": True,
        }

    return {
        "id": p.id,
        "type": "person",
        "display_name": _display_name(p.first_name, p.last_name),
        "first_name": p.first_name,
        "last_name": p.last_name,
        "sex": p.sex.value if p.sex is not None else None,
        "birth_date": _iso(p.birth_date),
        "death_date": _iso(p.death_date),
        "birth_place": p.birth_place,
        "father_id": p.father_id,
        "mother_id": p.mother_id,
        "is_deceased": p.is_deceased,
        "is_private": bool(p.is_private),
    }


def _union_to_public(u: Union | None) -> dict[str, Any] | None:
    if u is None:
        return None
    return {
        "id": u.id,
        "type": "union",
        "member1_id": u.member1_id,
        "member2_id": u.member2_id,
        "kind": u.kind.value,
        "start_date": _iso(u.start_date),
        "end_date": _iso(u.end_date),
        "has_ended": u.has_ended,
    }


def _other_union_to_public(ou: OtherUnion, **kw: Any) -> dict[str, Any]:
    return {
        "coparent_id": ou.coparent.person_id if isinstance(ou.coparent, Known) else None,
        "union": _union_to_public(ou.union),
        "partner": _person_to_public(ou.partner, **kw),
        "children": [_person_to_public(c, **kw) for c in ou.children],
    }


def _own_union_to_public(ou: OwnUnion, **kw: Any) -> dict[str, Any]:
    return {
        "union": _union_to_public(ou.union),
        "partner": _person_to_public(ou.partner, **kw),
        "children": [_person_to_public(c, **kw) for c in ou.children],
    }


def _snapshot_to_public(snap: Snapshot, *, skip_privacy: bool = False, today: date | None = None) -> dict[str, Any]:
    kw: dict[str, Any] = {"skip_privacy": skip_privacy, "today": today}
    return {
        "person": _person_to_public(snap.person, **kw),
        "father": _person_to_public(snap.father, **kw),
        "mother": _person_to_public(snap.mother, **kw),
        "siblings": [_person_to_public(s, **kw) for s in snap.siblings],
        "parent_union": _union_to_public(snap.parent_union),
        "mother_other_unions": [_other_union_to_public(ou, **kw) for ou in snap.mother_other_unions],
        "father_other_unions": [_other_union_to_public(ou, **kw) for ou in snap.father_other_unions],
        "own_unions": [_own_union_to_public(ou, **kw) for ou in snap.own_unions],
    }


# ---------------------------------------------------------------------------
# Layout payloads
# ---------------------------------------------------------------------------


def _pos(p: Position) -> list[float]:
    return [round(float(c), 4) for c in p]


def _person_node_to_public(n: PersonNode, **kw: Any) -> dict[str, Any]:
    return {
        "id": n.id,
        "type": "person",
        "pos": _pos(n.pos),
        "expanded": n.expanded,
        "member": _person_to_public(n.person, **kw),
    }


def _union_node_to_public(n: UnionNode) -> dict[str, Any]:
    return {
        "id": n.id,
        "type": "union",
        "pos": _pos(n.pos),
        "members": list(n.members),
        "placeholder": n.union is None,
        "union": _union_to_public(n.union),
    }


def _edge_to_public(e: Edge) -> dict[str, Any]:
    return {
        "id": e.key,
        "type": e.kind,
        "from": e.source,
        "to": e.target,
        "from_pos": _pos(e.source_pos),
        "to_pos": _pos(e.target_pos),
    }


def _delta_to_public(delta: LayoutDelta, *, skip_privacy: bool = False, today: date | None = None) -> dict[str, Any]:
    kw: dict[str, Any] = {"skip_privacy": skip_privacy, "today": today}
    return {
        "persons": [_person_node_to_public(n, **kw) for n in delta.persons],
        "unions": [_union_node_to_public(n) for n in delta.unions],
        "edges": [_edge_to_public(e) for e in delta.edges],
        "expanded": list(delta.expanded),
        "overlaps": delta.overlaps,
    }


def _layout_to_public(layout: TreeLayout, *, skip_privacy: bool = False, today: date | None = None) -> dict[str, Any]:
    kw: dict[str, Any] = {"skip_privacy": skip_privacy, "today": today}
    return {
        "persons": [_person_node_to_public(n, **kw) for n in layout.persons],
        "unions": [_union_node_to_public(n) for n in layout.unions],
        "edges": [_edge_to_public(e) for e in layout.edges],
    }
