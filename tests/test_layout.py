from __future__ import annotations

import asyncio
import itertools

from familytree.layout import (
    ORIGIN,
    LayoutConfig,
    TreeLayout,
    _dist_sq,
    find_free_position,
)
from familytree.models import Person, Sex, Snapshot
from familytree.resolve import resolve_snapshot


def _snap(store, pid):
    return asyncio.run(resolve_snapshot(store, pid))


def _expand(layout: TreeLayout, store, pid, anchor=ORIGIN):
    return layout.merge(_snap(store, pid), layout.position_of(pid) or anchor)


def _assert_separated(layout: TreeLayout) -> None:
    min_sq = layout.config.min_dist_sq
    for a, b in itertools.combinations(layout.persons, 2):
        assert _dist_sq(a.pos, b.pos) >= min_sq, (a.id, b.id, a.pos, b.pos)


def _three_generations(store):
    store.person("GF", sex=Sex.MALE)
    store.person("GM", sex=Sex.FEMALE)
    store.union("GFGM", "GF", "GM")
    store.person("F", father="GF", mother="GM", sex=Sex.MALE)
    store.person("AUNT", father="GF", mother="GM")
    store.person("M", sex=Sex.FEMALE)
    store.union("FM", "F", "M")
    store.person("A", father="F", mother="M")
    store.person("B", father="F", mother="M")
    store.person("S")
    store.union("AS", "A", "S")
    store.person("K1", father="A", mother="S")
    store.person("K2", father="A", mother="S")
    store.person("X")
    store.union("MX", "M", "X")
    store.person("H", father="X", mother="M")
    return store


# ---------------------------------------------------------------------------
# Collision resolver
# ---------------------------------------------------------------------------


def test_free_position_is_returned_unchanged() -> None:
    pos, ok = find_free_position((1.0, 2.0, 3.0), [(20.0, 0.0, 0.0)], LayoutConfig())
    assert ok
    assert pos == (1.0, 2.0, 3.0)


def test_conflicting_position_moves_to_first_ring() -> None:
    cfg = LayoutConfig()
    pos, ok = find_free_position((0.0, 0.0, 0.0), [(0.0, 0.0, 0.0)], cfg)
    assert ok
    assert pos == (cfg.min_dist, 0.0, 0.0)
    assert _dist_sq(pos, (0.0, 0.0, 0.0)) >= cfg.min_dist_sq


def test_exhausted_search_falls_back_to_desired() -> None:
    cfg = LayoutConfig(min_dist=5.0, ring_limit=1, ring_subdivisions=4)
    occupied = [(0.0, 0.0, 0.0), (5.0, 0.0, 0.0), (-5.0, 0.0, 0.0), (0.0, 0.0, 5.0), (0.0, 0.0, -5.0)]
    pos, ok = find_free_position((0.0, 0.0, 0.0), occupied, cfg)
    assert not ok
    assert pos == (0.0, 0.0, 0.0)


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


def test_root_expansion_places_family_around_anchor(nuclear) -> None:
    layout = TreeLayout()
    delta = _expand(layout, nuclear, "A")
    cfg = layout.config

    ids = [n.id for n in delta.persons]
    assert ids[:3] == ["A", "F", "M"]
    assert set(ids) == {"A", "F", "M", "B", "C"}
    assert delta.expanded == ["A"]

    assert layout.position_of("A") == ORIGIN
    assert layout.position_of("F") == (-cfg.parent_dx, cfg.parent_dy, 0.0)
    assert layout.position_of("M") == (cfg.parent_dx, cfg.parent_dy, 0.0)

    [hub] = delta.unions
    assert hub.id == "u-FM"
    assert hub.pos == (0.0, cfg.parent_dy - cfg.union_dy, 0.0)

    keys = {e.key for e in delta.edges}
    assert {"partner:F->u-FM", "partner:M->u-FM", "child:u-FM->A", "child:u-FM->B", "child:u-FM->C"} <= keys
    _assert_separated(layout)


def test_siblings_alternate_sides_on_the_same_row(nuclear) -> None:
    layout = TreeLayout()
    _expand(layout, nuclear, "A")
    bx, by, _ = layout.position_of("B")
    cx, cy, _ = layout.position_of("C")
    assert by == cy == 0.0
    assert bx < 0 < cx


def test_expanding_twice_is_a_no_op(nuclear) -> None:
    layout = TreeLayout()
    _expand(layout, nuclear, "A")
    pos = layout.position_of("A")

    second = _expand(layout, nuclear, "A", anchor=(50.0, 50.0, 50.0))
    assert second.is_empty()
    assert layout.position_of("A") == pos


def test_sibling_edge_emitted_once_regardless_of_order(nuclear) -> None:
    for order in (("A", "B"), ("B", "A")):
        layout = TreeLayout()
        for pid in order:
            _expand(layout, nuclear, pid)
        keys = [e.key for e in layout.edges]
        assert keys.count("child:u-FM->B") == 1
        assert keys.count("child:u-FM->A") == 1
        assert len(keys) == len(set(keys))
        assert [u.id for u in layout.unions] == ["u-FM"]


def test_parents_without_union_get_placeholder_hub(store) -> None:
    store.person("F")
    store.person("M")
    store.person("A", father="F", mother="M")

    layout = TreeLayout()
    delta = _expand(layout, store, "A")
    [hub] = delta.unions
    assert hub.id == "pu-F-M"
    assert hub.union is None
    assert {e.key for e in delta.edges} == {"partner:F->pu-F-M", "partner:M->pu-F-M", "child:pu-F-M->A"}


def test_single_parent_links_directly(store) -> None:
    store.person("M")
    store.person("A", mother="M")
    store.person("B", mother="M")

    layout = TreeLayout()
    delta = _expand(layout, store, "A")
    assert delta.unions == []
    keys = {e.key for e in delta.edges}
    assert "single-parent:M->A" in keys
    assert "sibling:A--B" in keys

    _expand(layout, store, "B")
    keys = [e.key for e in layout.edges]
    assert keys.count("sibling:A--B") == 1
    assert "single-parent:M->B" in keys


def test_spouse_expansion_reuses_union_and_position(store) -> None:
    store.person("P")
    store.person("S")
    store.union("PS", "P", "S")
    store.person("K", father="P", mother="S")

    layout = TreeLayout()
    first = _expand(layout, store, "P")
    assert [u.id for u in first.unions] == ["u-PS"]
    p_pos = layout.position_of("P")
    s_pos = layout.position_of("S")
    assert s_pos == (layout.config.own_union_radius, 0.0, 0.0)
    assert layout.position_of("K")[1] == -layout.config.parent_dy

    second = _expand(layout, store, "S")
    assert second.unions == []
    assert second.persons == []
    assert second.expanded == ["S"]
    assert layout.position_of("P") == p_pos
    assert layout.position_of("S") == s_pos
    assert [u.id for u in layout.unions] == ["u-PS"]


def test_multiple_own_unions_spread_on_an_arc(store) -> None:
    store.person("P")
    for i in range(3):
        store.person(f"S{i}")
        store.union(f"U{i}", "P", f"S{i}")

    layout = TreeLayout()
    _expand(layout, store, "P")
    radius = layout.config.own_union_radius
    zs = []
    for i in range(3):
        x, y, z = layout.position_of(f"S{i}")
        assert y == 0.0
        assert abs((x * x + z * z) - radius * radius) < 1e-6
        zs.append(z)
    assert zs[0] < zs[1] < zs[2]
    assert abs(zs[1]) < 1e-9


def test_half_siblings_hang_under_the_other_union(store) -> None:
    store.person("M")
    store.person("F1")
    store.person("F2")
    store.union("M-F2", "M", "F2")
    store.person("B", father="F1", mother="M")
    store.person("C", father="F2", mother="M")

    layout = TreeLayout()
    delta = _expand(layout, store, "B")
    cfg = layout.config

    hubs = {u.id: u for u in delta.unions}
    assert set(hubs) == {"pu-F1-M", "u-M-F2"}
    mx, my, _ = layout.position_of("M")
    f2x, f2y, _ = layout.position_of("F2")
    assert f2y == my
    assert f2x > mx

    cx, cy, cz = layout.position_of("C")
    assert cy == 0.0
    keys = {e.key for e in delta.edges}
    assert {"partner:M->u-M-F2", "partner:F2->u-M-F2", "child:u-M-F2->C", "half-sibling:B--C"} <= keys
    assert hubs["u-M-F2"].pos[1] == my - cfg.union_dy


def test_children_of_unknown_coparent_link_to_parent(store) -> None:
    store.person("F")
    store.person("M")
    store.person("A", father="F", mother="M")
    store.person("X", father="F")

    layout = TreeLayout()
    delta = _expand(layout, store, "A")
    keys = {e.key for e in delta.edges}
    assert "single-parent:F->X" in keys
    assert "half-sibling:A--X" in keys
    assert layout.position_of("X")[1] == 0.0


def test_three_generation_expansion_has_no_overlaps(store) -> None:
    _three_generations(store)
    layout = TreeLayout()
    total_overlaps = 0
    for pid in ("A", "F", "M", "GF", "S", "K1", "AUNT", "H"):
        total_overlaps += _expand(layout, store, pid).overlaps

    assert total_overlaps == 0
    _assert_separated(layout)
    assert len({p.id for p in layout.persons}) == len(layout.persons)
    keys = [e.key for e in layout.edges]
    assert len(keys) == len(set(keys))


def test_layout_is_deterministic(store) -> None:
    _three_generations(store)

    def _run():
        layout = TreeLayout()
        for pid in ("A", "F", "S", "M"):
            _expand(layout, store, pid)
        return (
            [(p.id, p.pos) for p in layout.persons],
            [(u.id, u.pos) for u in layout.unions],
            [e.key for e in layout.edges],
        )

    assert _run() == _run()


def test_edges_reference_placed_nodes(store) -> None:
    _three_generations(store)
    layout = TreeLayout()
    for pid in ("A", "F", "M"):
        _expand(layout, store, pid)

    node_ids = {p.id for p in layout.persons} | {u.id for u in layout.unions}
    for e in layout.edges:
        assert e.source in node_ids
        assert e.target in node_ids


def test_clear_discards_everything(nuclear) -> None:
    layout = TreeLayout()
    _expand(layout, nuclear, "A")
    layout.clear()
    assert layout.persons == [] and layout.unions == [] and layout.edges == []
    assert not layout.is_expanded("A")
    assert _expand(layout, nuclear, "A").expanded == ["A"]


def test_new_parents_slide_together_in_depth_when_their_row_is_taken() -> None:
    layout = TreeLayout()
    cfg = layout.config
    layout.merge(Snapshot(person=Person("Q", "Q", "Martin")), (-cfg.parent_dx, cfg.parent_dy, 0.0))

    father = Person("F", "F", "Martin")
    mother = Person("M", "M", "Martin")
    child = Person("A", "A", "Martin", father_id="F", mother_id="M")
    delta = layout.merge(Snapshot(person=child, father=father, mother=mother), ORIGIN)

    assert delta.overlaps == 0
    assert layout.position_of("F") == (-cfg.parent_dx, cfg.parent_dy, cfg.min_dist)
    assert layout.position_of("M") == (cfg.parent_dx, cfg.parent_dy, cfg.min_dist)
    _assert_separated(layout)


def test_fathers_other_partners_fan_outward_on_his_side(nuclear) -> None:
    nuclear.person("G1")
    nuclear.person("G2")
    nuclear.union("FG1", "F", "G1")
    nuclear.union("FG2", "G2", "F")
    nuclear.person("H1", father="F", mother="G1")
    nuclear.person("H2", father="F", mother="G2")

    layout = TreeLayout()
    delta = _expand(layout, nuclear, "A")
    cfg = layout.config

    fx, fy, fz = layout.position_of("F")
    g1x, g1y, g1z = layout.position_of("G1")
    g2x, g2y, g2z = layout.position_of("G2")
    assert g1y == g2y == fy
    assert g2x < g1x < fx
    assert g1x == fx - cfg.other_union_dx
    assert g2x == fx - 2 * cfg.other_union_dx
    assert g1z > fz > g2z

    keys = {e.key for e in delta.edges}
    assert {"child:u-FG1->H1", "child:u-FG2->H2", "half-sibling:A--H1", "half-sibling:A--H2"} <= keys
    assert delta.overlaps == 0
    _assert_separated(layout)


def test_repeated_union_records_share_one_hub(store) -> None:
    store.person("P")
    store.person("S")
    store.union("U1", "P", "S")
    store.union("U2", "S", "P")
    store.person("K", father="P", mother="S")

    layout = TreeLayout()
    _expand(layout, store, "P")
    assert [u.id for u in layout.unions] == ["u-U1"]
    assert [e.key for e in layout.edges].count("child:u-U1->K") == 1
    assert not any(e.target == "K" and e.source != "u-U1" for e in layout.edges)
