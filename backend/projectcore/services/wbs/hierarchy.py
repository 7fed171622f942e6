"""Flat WBS records -> ordered forest.

The tree view is rebuilt from the flat store on every read; nodes never hold
references across the persistence boundary. Malformed stored data (missing
parents, parent cycles, odd ``is_expanded`` shapes, duplicate codes) degrades
to a usable tree plus a list of anomalies instead of an exception.
"""
import datetime as dt
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from projectcore.core.logging import logger

_TRUE_STRINGS = {"true", "1", "yes", "on"}


def normalize_expanded(value: Any) -> bool:
    """Coerce a stored ``is_expanded`` value to a bool.

    None/missing -> True, bools as-is, "true"/"1"/"yes"/"on" -> True, other
    strings -> False, numbers by truthiness, ``{"value": x}`` wrappers are
    unwrapped (a wrapper without ``value`` counts as missing), anything else
    -> False.
    """
    if value is None:
        return True
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, Mapping):
        return normalize_expanded(value.get("value"))
    return False


def field_of(record: Any, name: str, default: Any = None) -> Any:
    if isinstance(record, Mapping):
        return record.get(name, default)
    return getattr(record, name, default)


@dataclass
class Anomaly:
    kind: str  # missing_parent|parent_cycle|non_boolean_expanded|level_mismatch|duplicate_wbs_code|duplicate_id
    item_id: str
    detail: str | None = None


@dataclass
class WBSNode:
    id: str
    parent_id: str | None
    wbs_id: str
    level: int
    sort_order: int
    created_at: Any
    is_expanded: bool
    record: Any
    children: list["WBSNode"] = field(default_factory=list)

    def get(self, name: str, default: Any = None) -> Any:
        return field_of(self.record, name, default)


@dataclass
class Hierarchy:
    roots: list[WBSNode]
    anomalies: list[Anomaly]

    @property
    def size(self) -> int:
        return len(flatten(self.roots))


def _sort_key(node: WBSNode):
    created = node.created_at
    if isinstance(created, dt.datetime):
        created = created.isoformat()
    return (node.sort_order or 0, created is None, str(created or ""), node.id)


def build_hierarchy(records: Iterable[Any], project_id: str | None = None) -> Hierarchy:
    anomalies: list[Anomaly] = []
    nodes: dict[str, WBSNode] = {}
    codes: dict[str, str] = {}

    for rec in records:
        item_id = str(field_of(rec, "id"))
        if item_id in nodes:
            # first record wins; a repeated id cannot be a second node
            anomalies.append(Anomaly("duplicate_id", item_id))
            continue
        raw_expanded = field_of(rec, "is_expanded")
        if raw_expanded is not None and not isinstance(raw_expanded, bool):
            anomalies.append(Anomaly("non_boolean_expanded", item_id, repr(raw_expanded)))
        parent_id = field_of(rec, "parent_id")
        node = WBSNode(
            id=item_id,
            parent_id=str(parent_id) if parent_id else None,
            wbs_id=field_of(rec, "wbs_id") or "",
            level=field_of(rec, "level") or 0,
            sort_order=field_of(rec, "sort_order") or 0,
            created_at=field_of(rec, "created_at"),
            is_expanded=normalize_expanded(raw_expanded),
            record=rec,
        )
        nodes[item_id] = node
        if node.wbs_id:
            if node.wbs_id in codes:
                anomalies.append(Anomaly("duplicate_wbs_code", item_id, f"{node.wbs_id} also on {codes[node.wbs_id]}"))
            else:
                codes[node.wbs_id] = item_id

    # Effective parent per node: None for roots and orphans
    parents: dict[str, str | None] = {}
    for node in nodes.values():
        if node.parent_id is None:
            parents[node.id] = None
        elif node.parent_id not in nodes:
            anomalies.append(Anomaly("missing_parent", node.id, node.parent_id))
            parents[node.id] = None
        else:
            parents[node.id] = node.parent_id

    _cut_parent_cycles(parents, anomalies)

    roots: list[WBSNode] = []
    for node in nodes.values():
        parent = parents[node.id]
        if parent is None:
            roots.append(node)
        else:
            nodes[parent].children.append(node)

    _order_and_level(roots, anomalies)

    if anomalies:
        logger.warning(
            "wbs_hierarchy_anomalies",
            project_id=project_id,
            count=len(anomalies),
            kinds=sorted({a.kind for a in anomalies}),
        )
    return Hierarchy(roots=roots, anomalies=anomalies)


def _cut_parent_cycles(parents: dict[str, str | None], anomalies: list[Anomaly]) -> None:
    visiting, done = 1, 2
    state: dict[str, int] = {}
    for start in parents:
        path = []
        cur = start
        while cur is not None and cur not in state:
            state[cur] = visiting
            path.append(cur)
            cur = parents[cur]
        if cur is not None and state[cur] == visiting:
            # cur is on the current path: its parent edge closes the loop
            anomalies.append(Anomaly("parent_cycle", cur, parents[cur]))
            parents[cur] = None
        for p in path:
            state[p] = done


def _order_and_level(roots: list[WBSNode], anomalies: list[Anomaly]) -> None:
    roots.sort(key=_sort_key)
    stack = [(node, 0) for node in roots]
    while stack:
        node, depth = stack.pop()
        if node.level != depth:
            anomalies.append(Anomaly("level_mismatch", node.id, f"stored {node.level}, depth {depth}"))
            node.level = depth
        node.children.sort(key=_sort_key)
        stack.extend((child, depth + 1) for child in node.children)


def flatten(roots: Iterable[WBSNode]) -> list[WBSNode]:
    out: list[WBSNode] = []
    stack = list(reversed(list(roots)))
    while stack:
        node = stack.pop()
        out.append(node)
        stack.extend(reversed(node.children))
    return out


def find_node(roots: Iterable[WBSNode], item_id: str) -> WBSNode | None:
    for node in flatten(roots):
        if node.id == item_id:
            return node
    return None


def _code_parts(code: str) -> list[int]:
    parts = []
    for p in (code or "").split("."):
        try:
            parts.append(int(p))
        except ValueError:
            parts.append(0)
    return parts


def _first_free(numbers: Iterable[int]) -> int:
    taken = set(numbers)
    n = 1
    while n in taken:
        n += 1
    return n


def _base(code: str) -> str:
    return code[:-2] if code.endswith(".0") else code


def next_wbs_code(records: Iterable[Any], parent_id: str | None = None) -> str:
    """Next free code: "N.0" for roots, "<parent base>.n" for children."""
    records = list(records)
    if parent_id is None:
        roots = [r for r in records if not field_of(r, "parent_id")]
        return f"{_first_free(_code_parts(field_of(r, 'wbs_id'))[0] for r in roots)}.0"

    parent = next((r for r in records if str(field_of(r, "id")) == str(parent_id)), None)
    if parent is None:
        return "1.0"
    siblings = [r for r in records if str(field_of(r, "parent_id") or "") == str(parent_id)]
    n = _first_free(_code_parts(field_of(s, "wbs_id"))[-1] for s in siblings)
    return f"{_base(field_of(parent, 'wbs_id') or '')}.{n}"


def renumber(records: Iterable[Any]) -> list[tuple[str, str]]:
    """Sequential codes in tree order; returns (id, new_code) for changed items only."""
    hierarchy = build_hierarchy(records)
    changes: list[tuple[str, str]] = []

    def walk(nodes: list[WBSNode], parent_code: str | None) -> None:
        for index, node in enumerate(nodes, start=1):
            code = f"{index}.0" if parent_code is None else f"{_base(parent_code)}.{index}"
            if code != node.wbs_id:
                changes.append((node.id, code))
            walk(node.children, code)

    walk(hierarchy.roots, None)
    return changes


def rebase_wbs_code(code: str | None, old_code: str | None, new_code: str) -> str | None:
    """Move a descendant code from under ``old_code`` to under ``new_code``.

    ``rebase_wbs_code("2.1.3", "2.0", "1.4") == "1.4.1.3"``; None when ``code``
    does not sit under ``old_code``.
    """
    old_base = _base(old_code or "")
    if not code or not old_base or not code.startswith(old_base + "."):
        return None
    return _base(new_code) + code[len(old_base):]
