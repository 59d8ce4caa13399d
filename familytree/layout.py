"""Incremental, collision-aware placement of family graph nodes.

Coordinates are ``(x, y, z)``: ``x`` is the lateral axis, ``y`` the
generation axis (ancestors have larger ``y``) and ``z`` the depth axis.
A flat renderer can drop ``z``.

Rows per generation, relative to a person at ``y``:

- parents at ``y + parent_dy``
- union nodes of those parents at ``y + parent_dy - union_dy``
- siblings, half siblings and partners at ``y``
- union nodes of the person at ``y - union_dy``, children at ``y - parent_dy``
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field

try:
    from .models import OtherUnion, Person, Snapshot, Union
except ImportError:  # pragma: no cover
    # Support running with CWD=familytree (e.g., `python -m uvicorn main:app`).
    from models import OtherUnion, Person, Snapshot, Union

log = logging.getLogger(__name__)

Position = tuple[float, float, float]

ORIGIN: Position = (0.0, 0.0, 0.0)


@dataclass(frozen=True)
class LayoutConfig:
    min_dist: float = 7.0
    parent_dx: float = 7.0
    parent_dy: float = 9.0
    union_dy: float = 4.5
    sibling_spacing: float = 8.0
    other_union_dx: float = 14.0
    other_union_dz: float = 8.0
    own_union_radius: float = 13.0
    own_union_arc_step: float = 0.65
    own_union_max_arc: float = math.pi * 0.75
    ring_limit: int = 16
    ring_subdivisions: int = 8
    parent_shift_limit: int = 24

    @property
    def min_dist_sq(self) -> float:
        return self.min_dist * self.min_dist


# ---------------------------------------------------------------------------
# Collision handling
# ---------------------------------------------------------------------------


def _dist_sq(a: Position, b: Position) -> float:
    return (a[0] - b[0]) ** 2 + (a[1] - b[1]) ** 2 + (a[2] - b[2]) ** 2


def conflicts(p: Position, occupied: list[Position], min_dist_sq: float) -> bool:
    return any(_dist_sq(p, o) < min_dist_sq for o in occupied)


def find_free_position(
    desired: Position,
    occupied: list[Position],
    config: LayoutConfig,
) -> tuple[Position, bool]:
    """Return ``(position, ok)`` for a node that wants to sit at ``desired``.

    Rings of growing radius (one ``min_dist`` per ring, ``ring_subdivisions``
    more candidates per ring) are searched in the ``x``/``z`` plane so the
    node keeps its generation row. When every ring is exhausted the desired
    position is returned with ``ok=False``.
    """

    min_sq = config.min_dist_sq
    if not conflicts(desired, occupied, min_sq):
        return desired, True

    x, y, z = desired
    for r in range(1, config.ring_limit + 1):
        n = r * config.ring_subdivisions
        radius = r * config.min_dist
        for i in range(n):
            angle = (i / n) * math.pi * 2
            candidate = (x + radius * math.cos(angle), y, z + radius * math.sin(angle))
            if not conflicts(candidate, occupied, min_sq):
                return candidate, True

    log.debug("collision search exhausted around %s, accepting overlap", desired)
    return desired, False


def _alternating(i: int) -> tuple[int, int]:
    """Side (-1/+1) and step count for the i-th item of an alternating fan."""
    side = -1 if i % 2 == 0 else 1
    return side, (i // 2) + 1


def _midpoint(a: Position, b: Position) -> Position:
    return ((a[0] + b[0]) / 2, (a[1] + b[1]) / 2, (a[2] + b[2]) / 2)


# ---------------------------------------------------------------------------
# Graph state
# ---------------------------------------------------------------------------


@dataclass
class PersonNode:
    id: str
    person: Person
    pos: Position
    expanded: bool = False


@dataclass
class UnionNode:
    """A hub between two partners.

    ``union`` is None for a placeholder hub: two known co-parents without a
    recorded union.
    """

    id: str
    union: Union | None
    pos: Position
    members: tuple[str, str]


@dataclass(frozen=True)
class Edge:
    key: str
    kind: str
    source: str
    target: str
    source_pos: Position
    target_pos: Position


@dataclass
class LayoutDelta:
    persons: list[PersonNode] = field(default_factory=list)
    unions: list[UnionNode] = field(default_factory=list)
    edges: list[Edge] = field(default_factory=list)
    expanded: list[str] = field(default_factory=list)
    overlaps: int = 0

    def is_empty(self) -> bool:
        return not (self.persons or self.unions or self.edges or self.expanded)


def union_node_id(union: Union | None, a: str, b: str) -> str:
    if union is not None:
        return f"u-{union.id}"
    return f"pu-{a}-{b}"


def _pair_key(kind: str, a: str, b: str) -> str:
    lo, hi = sorted((a, b))
    return f"{kind}:{lo}--{hi}"


class TreeLayout:
    """Accumulated node/edge state for one tree view.

    ``merge`` adds a resolved snapshot and returns only what is new.
    """

    def __init__(self, config: LayoutConfig | None = None) -> None:
        self.config = config or LayoutConfig()
        self._persons: dict[str, PersonNode] = {}
        self._unions: dict[str, UnionNode] = {}
        self._edges: dict[str, Edge] = {}
        self._occupied: list[Position] = []
        self._expanded: set[str] = set()

    # -- read side ---------------------------------------------------------

    @property
    def persons(self) -> list[PersonNode]:
        return list(self._persons.values())

    @property
    def unions(self) -> list[UnionNode]:
        return list(self._unions.values())

    @property
    def edges(self) -> list[Edge]:
        return list(self._edges.values())

    def position_of(self, person_id: str) -> Position | None:
        node = self._persons.get(person_id)
        return node.pos if node else None

    def is_expanded(self, person_id: str) -> bool:
        return person_id in self._expanded

    def clear(self) -> None:
        self._persons.clear()
        self._unions.clear()
        self._edges.clear()
        self._occupied.clear()
        self._expanded.clear()

    # -- primitives ----------------------------------------------------------

    def _add_person(self, person: Person, desired: Position, delta: LayoutDelta) -> Position:
        existing = self._persons.get(person.id)
        if existing is not None:
            return existing.pos
        pos, ok = find_free_position(desired, self._occupied, self.config)
        if not ok:
            delta.overlaps += 1
        self._occupied.append(pos)
        node = PersonNode(id=person.id, person=person, pos=pos)
        self._persons[person.id] = node
        delta.persons.append(node)
        return pos

    def _add_union(
        self,
        node_id: str,
        union: Union | None,
        members: tuple[str, str],
        desired: Position,
        delta: LayoutDelta,
    ) -> Position:
        existing = self._unions.get(node_id)
        if existing is not None:
            return existing.pos
        node = UnionNode(id=node_id, union=union, pos=desired, members=members)
        self._unions[node_id] = node
        delta.unions.append(node)
        return desired

    def _node_pos(self, node_id: str) -> Position:
        if node_id in self._persons:
            return self._persons[node_id].pos
        return self._unions[node_id].pos

    def _add_edge(self, key: str, kind: str, source: str, target: str, delta: LayoutDelta) -> None:
        if key in self._edges:
            return
        edge = Edge(
            key=key,
            kind=kind,
            source=source,
            target=target,
            source_pos=self._node_pos(source),
            target_pos=self._node_pos(target),
        )
        self._edges[key] = edge
        delta.edges.append(edge)

    def _directed_edge(self, kind: str, source: str, target: str, delta: LayoutDelta) -> None:
        self._add_edge(f"{kind}:{source}->{target}", kind, source, target, delta)

    def _mark_expanded(self, person_id: str, delta: LayoutDelta) -> None:
        self._expanded.add(person_id)
        node = self._persons[person_id]
        if not node.expanded:
            node.expanded = True
            delta.expanded.append(person_id)

    # -- merge -----------------------------------------------------------------

    def merge(self, snap: Snapshot, anchor: Position = ORIGIN) -> LayoutDelta:
        """Merge one snapshot; a person already expanded yields an empty delta."""

        delta = LayoutDelta()
        person = snap.person
        if person.id in self._expanded:
            return delta

        self_pos = self._add_person(person, anchor, delta)
        self._mark_expanded(person.id, delta)

        father_pos, mother_pos = self._place_parents(snap, self_pos, delta)
        hub = self._link_parents(snap, father_pos, mother_pos, delta)
        self._place_siblings(snap, self_pos, hub, delta)

        if snap.mother is not None and mother_pos is not None:
            self._place_other_unions(snap, snap.mother, mother_pos, snap.mother_other_unions, 1, delta)
        if snap.father is not None and father_pos is not None:
            self._place_other_unions(snap, snap.father, father_pos, snap.father_other_unions, -1, delta)

        self._place_own_unions(snap, self_pos, delta)
        return delta

    def _place_parents(
        self,
        snap: Snapshot,
        self_pos: Position,
        delta: LayoutDelta,
    ) -> tuple[Position | None, Position | None]:
        cfg = self.config
        x, y, z = self_pos
        father_new = snap.father is not None and snap.father.id not in self._persons
        mother_new = snap.mother is not None and snap.mother.id not in self._persons

        shift = 0.0
        if father_new or mother_new:
            # Slide the parent pair in depth until neither new parent collides.
            for i in range(cfg.parent_shift_limit + 1):
                if i == 0:
                    dz = 0.0
                else:
                    step = math.ceil(i / 2)
                    dz = (step if i % 2 == 1 else -step) * cfg.min_dist
                f_ok = not father_new or not conflicts(
                    (x - cfg.parent_dx, y + cfg.parent_dy, z + dz), self._occupied, cfg.min_dist_sq
                )
                m_ok = not mother_new or not conflicts(
                    (x + cfg.parent_dx, y + cfg.parent_dy, z + dz), self._occupied, cfg.min_dist_sq
                )
                if f_ok and m_ok:
                    shift = dz
                    break

        father_pos = None
        mother_pos = None
        if snap.father is not None:
            father_pos = self._add_person(snap.father, (x - cfg.parent_dx, y + cfg.parent_dy, z + shift), delta)
        if snap.mother is not None:
            mother_pos = self._add_person(snap.mother, (x + cfg.parent_dx, y + cfg.parent_dy, z + shift), delta)
        return father_pos, mother_pos

    def _link_parents(
        self,
        snap: Snapshot,
        father_pos: Position | None,
        mother_pos: Position | None,
        delta: LayoutDelta,
    ) -> str | None:
        """Connect the parents to the person; returns the parent hub id, if any."""

        pid = snap.person.id
        if snap.father is not None and snap.mother is not None and father_pos and mother_pos:
            fid, mid = snap.father.id, snap.mother.id
            hub = union_node_id(snap.parent_union, fid, mid)
            mx, my, mz = _midpoint(father_pos, mother_pos)
            self._add_union(hub, snap.parent_union, (fid, mid), (mx, my - self.config.union_dy, mz), delta)
            self._directed_edge("partner", fid, hub, delta)
            self._directed_edge("partner", mid, hub, delta)
            self._directed_edge("child", hub, pid, delta)
            return hub

        if snap.father is not None:
            self._directed_edge("single-parent", snap.father.id, pid, delta)
        elif snap.mother is not None:
            self._directed_edge("single-parent", snap.mother.id, pid, delta)
        return None

    def _place_siblings(self, snap: Snapshot, self_pos: Position, hub: str | None, delta: LayoutDelta) -> None:
        x, y, z = self_pos
        pid = snap.person.id
        for i, sib in enumerate(snap.siblings):
            side, step = _alternating(i)
            self._add_person(sib, (x + side * step * self.config.sibling_spacing, y, z), delta)
            if hub is not None:
                self._directed_edge("child", hub, sib.id, delta)
            else:
                self._add_edge(_pair_key("sibling", pid, sib.id), "sibling", pid, sib.id, delta)

    def _place_other_unions(
        self,
        snap: Snapshot,
        parent: Person,
        parent_pos: Position,
        entries: list[OtherUnion],
        side: int,
        delta: LayoutDelta,
    ) -> None:
        """Place a parent's other partners and their children.

        Partners fan outward on the parent's side (``side`` is +1 for the
        mother, -1 for the father), one ``other_union_dx`` further per
        partner, alternating in depth.
        """

        cfg = self.config
        px, py, pz = parent_pos
        pid = snap.person.id
        partner_index = 0
        for entry in entries:
            if entry.partner is None:
                for j, child in enumerate(entry.children):
                    desired = (px + side * (j + 1) * cfg.sibling_spacing, py - cfg.parent_dy, pz)
                    self._add_person(child, desired, delta)
                    self._directed_edge("single-parent", parent.id, child.id, delta)
                    self._add_edge(_pair_key("half-sibling", pid, child.id), "half-sibling", pid, child.id, delta)
                continue

            partner_index += 1
            depth_side = 1 if partner_index % 2 == 1 else -1
            partner_pos = self._add_person(
                entry.partner,
                (
                    px + side * partner_index * cfg.other_union_dx,
                    py,
                    pz + depth_side * partner_index * cfg.other_union_dz,
                ),
                delta,
            )

            hub = union_node_id(entry.union, *self._ordered_pair(parent.id, entry.partner.id, side))
            mx, my, mz = _midpoint(parent_pos, partner_pos)
            hub_pos = self._add_union(
                hub,
                entry.union,
                (parent.id, entry.partner.id),
                (mx, my - cfg.union_dy, mz),
                delta,
            )
            self._directed_edge("partner", parent.id, hub, delta)
            self._directed_edge("partner", entry.partner.id, hub, delta)

            hx, hy, hz = hub_pos
            for j, child in enumerate(entry.children):
                c_side, c_step = _alternating(j)
                desired = (hx + c_side * c_step * cfg.sibling_spacing, hy - (cfg.parent_dy - cfg.union_dy), hz)
                self._add_person(child, desired, delta)
                self._directed_edge("child", hub, child.id, delta)
                self._add_edge(_pair_key("half-sibling", pid, child.id), "half-sibling", pid, child.id, delta)

    @staticmethod
    def _ordered_pair(parent_id: str, partner_id: str, side: int) -> tuple[str, str]:
        # Placeholder hubs are keyed father-first, matching parent hubs.
        return (partner_id, parent_id) if side > 0 else (parent_id, partner_id)

    def _place_own_unions(self, snap: Snapshot, self_pos: Position, delta: LayoutDelta) -> None:
        cfg = self.config
        x, y, z = self_pos
        pid = snap.person.id

        fresh = [ou for ou in snap.own_unions if union_node_id(ou.union, pid, ou.partner.id) not in self._unions]
        n = len(fresh)
        arc = 0.0 if n <= 1 else min((n - 1) * cfg.own_union_arc_step, cfg.own_union_max_arc)

        j = 0
        for ou in snap.own_unions:
            hub = union_node_id(ou.union, pid, ou.partner.id)
            if hub in self._unions:
                hub_pos = self._unions[hub].pos
                self._add_person(ou.partner, (x + cfg.own_union_radius, y, z), delta)
            else:
                angle = 0.0 if n <= 1 else -arc / 2 + j * (arc / (n - 1))
                j += 1
                partner_pos = self._add_person(
                    ou.partner,
                    (x + cfg.own_union_radius * math.cos(angle), y, z + cfg.own_union_radius * math.sin(angle)),
                    delta,
                )
                mx, my, mz = _midpoint(self_pos, partner_pos)
                hub_pos = self._add_union(hub, ou.union, (pid, ou.partner.id), (mx, my - cfg.union_dy, mz), delta)

            self._directed_edge("partner", pid, hub, delta)
            self._directed_edge("partner", ou.partner.id, hub, delta)

            hx, hy, hz = hub_pos
            for k, child in enumerate(ou.children):
                c_side, c_step = _alternating(k)
                desired = (hx + c_side * c_step * cfg.sibling_spacing, hy - (cfg.parent_dy - cfg.union_dy), hz)
                self._add_person(child, desired, delta)
                self._directed_edge("child", hub, child.id, delta)
