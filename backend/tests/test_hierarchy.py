import datetime as dt
import pytest

from projectcore.services.wbs.hierarchy import (
    build_hierarchy,
    flatten,
    find_node,
    next_wbs_code,
    normalize_expanded,
    rebase_wbs_code,
    renumber,
)

def _item(id, parent=None, sort=0, wbs="", level=0, created=None, **kw):
    return dict(id=id, parent_id=parent, sort_order=sort, wbs_id=wbs, level=level,
                created_at=created or dt.datetime(2025, 1, 1), **kw)

@pytest.mark.parametrize("value,expected", [
    (True, True),
    (False, False),
    (None, True),
    ({"value": "false"}, False),
    ({"value": "true"}, True),
    ({"value": True}, True),
    ({}, True),
    ("TRUE ", True),
    ("no", False),
    (1, True),
    (0, False),
    ([], False),
])
def test_normalize_expanded_truth_table(value, expected):
    assert normalize_expanded(value) is expected

def test_missing_is_expanded_defaults_true():
    h = build_hierarchy([{"id": "a", "wbs_id": "1.0"}])
    assert h.roots[0].is_expanded is True

def test_parent_with_two_children_ordered_by_sort_order():
    items = [
        _item("C", parent="A", sort=2, wbs="1.2", level=1),
        _item("A", wbs="1.0"),
        _item("B", parent="A", sort=1, wbs="1.1", level=1),
    ]
    h = build_hierarchy(items)
    assert [n.id for n in h.roots] == ["A"]
    assert [c.id for c in h.roots[0].children] == ["B", "C"]
    assert h.anomalies == []

def test_sort_ties_broken_by_creation_time():
    items = [
        _item("late", sort=1, created=dt.datetime(2025, 3, 1)),
        _item("early", sort=1, created=dt.datetime(2025, 2, 1)),
        _item("first", sort=0, created=dt.datetime(2025, 4, 1)),
    ]
    assert [n.id for n in build_hierarchy(items).roots] == ["first", "early", "late"]

def test_ghost_parent_promoted_to_root():
    items = [_item("A", wbs="1.0"), _item("D", parent="ghost-id", wbs="9.1", level=1)]
    h = build_hierarchy(items)
    assert {n.id for n in h.roots} == {"A", "D"}
    assert [a.kind for a in h.anomalies if a.item_id == "D"] == ["missing_parent", "level_mismatch"]
    assert find_node(h.roots, "D").level == 0

def test_parent_cycle_does_not_lose_nodes():
    items = [_item("x", parent="y"), _item("y", parent="x"), _item("z", parent="x")]
    h = build_hierarchy(items)
    assert sorted(n.id for n in flatten(h.roots)) == ["x", "y", "z"]
    assert len(h.roots) == 1
    assert any(a.kind == "parent_cycle" for a in h.anomalies)

def test_node_count_preserved_for_mixed_input():
    items = [_item(str(i), parent=str(i // 2) if i else None, sort=i % 3) for i in range(50)]
    items.append(_item("orphan", parent="nope"))
    items.append(_item("odd", is_expanded={"value": "false"}))
    h = build_hierarchy(items)
    assert h.size == len(items)
    assert sorted(n.id for n in flatten(h.roots)) == sorted(i["id"] for i in items)
    assert find_node(h.roots, "odd").is_expanded is False

def test_levels_recomputed_from_depth():
    items = [_item("a"), _item("b", parent="a", level=5), _item("c", parent="b", level=2)]
    h = build_hierarchy(items)
    assert [(n.id, n.level) for n in flatten(h.roots)] == [("a", 0), ("b", 1), ("c", 2)]
    assert [a.item_id for a in h.anomalies if a.kind == "level_mismatch"] == ["b"]

def test_duplicate_codes_are_flagged_and_kept():
    items = [_item("a", wbs="1.0"), _item("b", wbs="1.0", sort=1)]
    h = build_hierarchy(items)
    assert len(h.roots) == 2
    assert [a.kind for a in h.anomalies] == ["duplicate_wbs_code"]

def test_next_wbs_code():
    items = [
        _item("a", wbs="1.0"), _item("b", wbs="3.0"),
        _item("a1", parent="a", wbs="1.1", level=1), _item("a3", parent="a", wbs="1.3", level=1),
        _item("a11", parent="a1", wbs="1.1.1", level=2),
    ]
    assert next_wbs_code(items) == "2.0"
    assert next_wbs_code(items, "a") == "1.2"
    assert next_wbs_code(items, "a1") == "1.1.2"
    assert next_wbs_code(items, "b") == "3.1"
    assert next_wbs_code([]) == "1.0"

def test_renumber_returns_only_changes():
    items = [
        _item("a", wbs="1.0", sort=0),
        _item("b", wbs="5.0", sort=1),
        _item("b1", parent="b", wbs="5.7", level=1),
        _item("a1", parent="a", wbs="1.1", level=1),
    ]
    assert dict(renumber(items)) == {"b": "2.0", "b1": "2.1"}

def test_duplicate_ids_keep_first_record():
    h = build_hierarchy([
        {"id": "a", "title": "first"},
        {"id": "a", "title": "second"},
        {"id": "b", "parent_id": "a", "level": 1},
    ])
    assert h.size == 2
    assert find_node(h.roots, "a").get("title") == "first"
    assert [a.kind for a in h.anomalies] == ["duplicate_id"]

def test_rebase_wbs_code():
    assert rebase_wbs_code("2.1.3", "2.0", "1.4") == "1.4.1.3"
    assert rebase_wbs_code("2.1", "2.0", "3.0") == "3.1"
    assert rebase_wbs_code("7.1", "2.0", "3.0") is None
    assert rebase_wbs_code(None, "2.0", "3.0") is None
