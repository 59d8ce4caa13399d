from __future__ import annotations

import logging
from typing import Awaitable, TypeVar

try:
    from .models import (
        UNKNOWN,
        CoParent,
        Known,
        OtherUnion,
        OwnUnion,
        Person,
        PersonFilter,
        Snapshot,
        Union,
        coparent,
    )
    from .store import StoreError, TreeStore
except ImportError:  # pragma: no cover
    # Support running with CWD=familytree (e.g., `python -m uvicorn main:app`).
    from models import UNKNOWN, CoParent, Known, OtherUnion, OwnUnion, Person, PersonFilter, Snapshot, Union, coparent
    from store import StoreError, TreeStore

log = logging.getLogger(__name__)

T = TypeVar("T")


class PersonNotFound(LookupError):
    def __init__(self, person_id: str) -> None:
        super().__init__(f"person not found: {person_id}")
        self.person_id = person_id


async def _soft(aw: Awaitable[T], default: T, what: str) -> T:
    """Await a non-root lookup; a failing store degrades it to ``default``."""
    try:
        return await aw
    except StoreError as e:
        log.warning("lookup failed (%s), treating as unknown: %s", what, e)
        return default


def _sanitized_ref(ref: str | None, self_id: str) -> str | None:
    # A person cannot be their own parent.
    if not ref or ref == self_id:
        return None
    return ref


async def _person_or_none(store: TreeStore, person_id: str | None) -> Person | None:
    if not person_id:
        return None
    p = await _soft(store.get_person(person_id), None, f"person {person_id}")
    if p is None:
        log.debug("dangling reference to %s", person_id)
    return p


def _creation_key(p: Person) -> tuple[bool, object, str]:
    return (p.created_at is None, p.created_at or 0, p.id)


async def _other_unions(
    store: TreeStore,
    *,
    parent: Person,
    role: str,
    own_coparent: CoParent,
    focal_id: str,
    sibling_ids: set[str],
) -> list[OtherUnion]:
    """Group ``parent``'s other children by their other parent.

    ``role`` is the parent's slot ("mother" or "father"); the partition key is
    the value of the opposite slot. The partition equal to ``own_coparent`` is
    the focal person's own sibling group and is never reported.
    """

    if role == "mother":
        flt = PersonFilter(mother=Known(parent.id), exclude_id=focal_id)
    else:
        flt = PersonFilter(father=Known(parent.id), exclude_id=focal_id)
    children = await _soft(store.list_persons_by(flt), [], f"children of {parent.id}")
    unions = await _soft(store.list_unions_involving(parent.id), [], f"unions of {parent.id}")

    by_key: dict[CoParent, list[Person]] = {}
    key_order: list[CoParent] = []
    for child in children:
        if child.id in sibling_ids:
            continue
        other_ref = child.father_id if role == "mother" else child.mother_id
        key = coparent(_sanitized_ref(other_ref, child.id))
        if key == own_coparent:
            continue
        if key not in by_key:
            by_key[key] = []
            key_order.append(key)
        by_key[key].append(child)

    union_by_key: dict[CoParent, Union] = {}
    union_keys: list[CoParent] = []
    for u in unions:
        partner_id = u.partner_of(parent.id)
        if partner_id == parent.id:
            continue
        key = Known(partner_id)
        if key == own_coparent or key in union_by_key:
            continue
        union_by_key[key] = u
        union_keys.append(key)

    ordered: list[CoParent] = list(union_keys)
    ordered += [k for k in key_order if isinstance(k, Known) and k not in union_by_key]
    if UNKNOWN in by_key:
        ordered.append(UNKNOWN)

    out: list[OtherUnion] = []
    for key in ordered:
        kids = by_key.get(key, [])
        partner = await _person_or_none(store, key.person_id) if isinstance(key, Known) else None
        if isinstance(key, Known) and partner is None and not kids:
            # Dangling partner and nothing to show under it.
            continue
        out.append(OtherUnion(coparent=key, union=union_by_key.get(key), partner=partner, children=kids))
    return out


async def _own_unions(store: TreeStore, person: Person) -> list[OwnUnion]:
    unions = await _soft(store.list_unions_involving(person.id), [], f"unions of {person.id}")
    out: list[OwnUnion] = []
    seen_partners: set[str] = set()
    for u in unions:
        partner_id = u.partner_of(person.id)
        if partner_id == person.id or partner_id in seen_partners:
            # Self-union, or a later record for a partner already listed.
            continue
        seen_partners.add(partner_id)
        partner = await _person_or_none(store, partner_id)
        if partner is None:
            continue

        as_father = await _soft(
            store.list_persons_by(PersonFilter(father=Known(person.id), mother=Known(partner_id))),
            [],
            f"children of {person.id}+{partner_id}",
        )
        as_mother = await _soft(
            store.list_persons_by(PersonFilter(father=Known(partner_id), mother=Known(person.id))),
            [],
            f"children of {partner_id}+{person.id}",
        )
        seen: set[str] = set()
        children: list[Person] = []
        for c in sorted(as_father + as_mother, key=_creation_key):
            if c.id in seen or c.id == person.id:
                continue
            seen.add(c.id)
            children.append(c)
        out.append(OwnUnion(union=u, partner=partner, children=children))
    return out


async def resolve_snapshot(store: TreeStore, person_id: str) -> Snapshot:
    """Return the one-hop relational neighborhood of ``person_id``.

    Raises ``PersonNotFound`` when the person does not exist. A ``StoreError``
    on the root lookup propagates; every other failed lookup leaves its slot
    empty.
    """

    person = await store.get_person(person_id)
    if person is None:
        raise PersonNotFound(person_id)

    father_ref = _sanitized_ref(person.father_id, person.id)
    mother_ref = _sanitized_ref(person.mother_id, person.id)

    father = await _person_or_none(store, father_ref)
    mother = await _person_or_none(store, mother_ref)

    siblings: list[Person] = []
    if father_ref or mother_ref:
        siblings = await _soft(
            store.list_persons_by(
                PersonFilter(
                    father=coparent(father_ref),
                    mother=coparent(mother_ref),
                    exclude_id=person.id,
                )
            ),
            [],
            f"siblings of {person.id}",
        )
    sibling_ids = {s.id for s in siblings}

    parent_union = None
    if father is not None and mother is not None:
        parent_union = await _soft(
            store.find_union_between(father.id, mother.id),
            None,
            f"union {father.id}+{mother.id}",
        )

    mother_other: list[OtherUnion] = []
    if mother is not None:
        mother_other = await _other_unions(
            store,
            parent=mother,
            role="mother",
            own_coparent=coparent(father_ref),
            focal_id=person.id,
            sibling_ids=sibling_ids,
        )

    father_other: list[OtherUnion] = []
    if father is not None:
        father_other = await _other_unions(
            store,
            parent=father,
            role="father",
            own_coparent=coparent(mother_ref),
            focal_id=person.id,
            sibling_ids=sibling_ids,
        )

    own = await _own_unions(store, person)

    return Snapshot(
        person=person,
        father=father,
        mother=mother,
        siblings=siblings,
        parent_union=parent_union,
        mother_other_unions=mother_other,
        father_other_unions=father_other,
        own_unions=own,
    )
