"""Dependency references between WBS items.

Only storage-level validation and simple constraint dates live here; there is
no critical-path scheduling.
"""
import datetime as dt
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from projectcore.core.errors import ValidationError
from projectcore.core.logging import logger
from projectcore.services.wbs.hierarchy import field_of


class RelationType(str, Enum):
    finish_to_start = "finish_to_start"
    start_to_start = "start_to_start"
    finish_to_finish = "finish_to_finish"
    start_to_finish = "start_to_finish"


_ALIASES = {
    "FS": RelationType.finish_to_start,
    "SS": RelationType.start_to_start,
    "FF": RelationType.finish_to_finish,
    "SF": RelationType.start_to_finish,
}


def parse_relation(value: Any) -> RelationType:
    if isinstance(value, RelationType):
        return value
    if value is None:
        return RelationType.finish_to_start
    s = str(value).strip()
    if s.upper() in _ALIASES:
        return _ALIASES[s.upper()]
    try:
        return RelationType(s.lower())
    except ValueError:
        raise ValidationError(f"Unknown relation type: {value!r}", relation_type=value)


@dataclass(frozen=True)
class Predecessor:
    predecessor_id: str
    relation_type: RelationType = RelationType.finish_to_start
    lag_days: int = 0

    def to_dict(self) -> dict:
        return {
            "predecessor_id": self.predecessor_id,
            "relation_type": self.relation_type.value,
            "lag_days": self.lag_days,
        }


def to_predecessor(raw: Any) -> Predecessor:
    """Canonical or legacy ({id, type, lag}) shape -> Predecessor; ValidationError if unusable."""
    if isinstance(raw, Predecessor):
        return raw
    if not isinstance(raw, Mapping):
        raise ValidationError("Predecessor must be an object", value=repr(raw))
    pred_id = raw.get("predecessor_id", raw.get("id"))
    if not pred_id or not isinstance(pred_id, str):
        raise ValidationError("Predecessor id is required", value=repr(raw))
    lag = raw.get("lag_days", raw.get("lag", 0)) or 0
    try:
        lag = int(lag)
    except (TypeError, ValueError):
        raise ValidationError("lag_days must be an integer", value=repr(lag))
    return Predecessor(
        predecessor_id=pred_id,
        relation_type=parse_relation(raw.get("relation_type", raw.get("type"))),
        lag_days=lag,
    )


def parse_predecessors(raw: Any) -> list[Predecessor]:
    """Lenient read path: entries that cannot be understood are skipped."""
    if not isinstance(raw, list):
        return []
    out = []
    for entry in raw:
        try:
            out.append(to_predecessor(entry))
        except ValidationError as e:
            logger.warning("wbs_predecessor_unparseable", error=e.message, **e.context)
    return out


def build_graph(records: Iterable[Any]) -> dict[str, list[str]]:
    """item id -> predecessor ids, for every record in the batch."""
    return {
        str(field_of(r, "id")): [p.predecessor_id for p in parse_predecessors(field_of(r, "predecessors"))]
        for r in records
    }


def _reaches(start: str, target: str, graph: Mapping[str, list[str]]) -> bool:
    visited: set[str] = set()
    stack = [start]
    while stack:
        cur = stack.pop()
        if cur == target:
            return True
        if cur in visited or cur not in graph:
            # unknown ids are stale references, not part of the walk
            continue
        visited.add(cur)
        stack.extend(graph[cur])
    return False


def would_create_cycle(item_id: str, candidate_id: str, graph: Mapping[str, list[str]]) -> bool:
    """True if making ``candidate_id`` a predecessor of ``item_id`` closes a loop."""
    return _reaches(candidate_id, item_id, graph)


def validate_predecessors(
    item_id: str,
    predecessors: Iterable[Any],
    graph: Mapping[str, list[str]],
) -> list[Predecessor]:
    """Strict write path. Returns canonical predecessors or raises ValidationError.

    Every proposed predecessor chain is walked, so a loop already present in
    stored data through ``item_id`` is rejected on the next mutation.
    """
    preds = [to_predecessor(p) for p in predecessors]
    seen: set[str] = set()
    for p in preds:
        if p.predecessor_id == item_id:
            raise ValidationError("An item cannot be its own predecessor", item_id=item_id)
        if p.predecessor_id in seen:
            raise ValidationError("Duplicate predecessor", item_id=item_id, predecessor_id=p.predecessor_id)
        seen.add(p.predecessor_id)
        if p.predecessor_id not in graph:
            raise ValidationError("Predecessor not found in project", item_id=item_id, predecessor_id=p.predecessor_id)

    proposed = dict(graph)
    proposed[item_id] = [p.predecessor_id for p in preds]
    for p in preds:
        if _reaches(p.predecessor_id, item_id, proposed):
            raise ValidationError("Cyclic predecessor", item_id=item_id, predecessor_id=p.predecessor_id)
    return preds


def stale_predecessors(record: Any, known_ids: Iterable[str]) -> list[str]:
    known = set(known_ids)
    return [p.predecessor_id for p in parse_predecessors(field_of(record, "predecessors")) if p.predecessor_id not in known]


def find_cycles(graph: Mapping[str, list[str]]) -> list[list[str]]:
    """Predecessor loops in stored data, one list of ids per loop. Read-only."""
    cycles: list[list[str]] = []
    state: dict[str, int] = {}
    for start in graph:
        if start in state:
            continue
        # iterative DFS with an explicit path
        path: list[str] = []
        on_path: set[str] = set()
        stack: list[tuple[str, int]] = [(start, 0)]
        while stack:
            node, idx = stack.pop()
            if idx == 0:
                state[node] = 1
                path.append(node)
                on_path.add(node)
            succ = [s for s in graph.get(node, []) if s in graph]
            if idx < len(succ):
                stack.append((node, idx + 1))
                nxt = succ[idx]
                if nxt in on_path:
                    cycles.append(path[path.index(nxt):])
                elif nxt not in state:
                    stack.append((nxt, 0))
            else:
                state[node] = 2
                path.pop()
                on_path.discard(node)
    return cycles


def _as_date(value: Any) -> dt.date | None:
    if value is None or isinstance(value, dt.date):
        return value
    return dt.date.fromisoformat(str(value)[:10])


def constraint_date(predecessor: Any, relation: RelationType, lag_days: int = 0) -> dt.date | None:
    """Date the predecessor imposes on its successor, or None if it is undated.

    finish_to_start yields the successor's earliest start (day after the
    predecessor ends); start_to_start its earliest start; finish_to_finish and
    start_to_finish its earliest finish.
    """
    start = _as_date(field_of(predecessor, "start_date"))
    end = _as_date(field_of(predecessor, "end_date"))
    if relation == RelationType.finish_to_start:
        base = end + dt.timedelta(days=1) if end else None
    elif relation == RelationType.finish_to_finish:
        base = end
    else:
        base = start
    if base is None:
        return None
    return base + dt.timedelta(days=lag_days)


def earliest_start(record: Any, records: Iterable[Any]) -> dt.date | None:
    by_id = {str(field_of(r, "id")): r for r in records}
    preds = parse_predecessors(field_of(record, "predecessors"))
    if not preds:
        return _as_date(field_of(record, "start_date"))
    latest = None
    for p in preds:
        other = by_id.get(p.predecessor_id)
        if other is None:
            continue
        if p.relation_type in (RelationType.finish_to_finish, RelationType.start_to_finish):
            # finish constraint -> shift back by the item's own duration
            finish = constraint_date(other, p.relation_type, p.lag_days)
            d = finish - dt.timedelta(days=max((field_of(record, "duration") or 1) - 1, 0)) if finish else None
        else:
            d = constraint_date(other, p.relation_type, p.lag_days)
        if d and (latest is None or d > latest):
            latest = d
    return latest


def schedule_violations(record: Any, records: Iterable[Any]) -> list[str]:
    preds = parse_predecessors(field_of(record, "predecessors"))
    if not preds:
        return []
    start = _as_date(field_of(record, "start_date"))
    end = _as_date(field_of(record, "end_date"))
    if start is None or end is None:
        return ["Item must have both start and end dates"]
    by_id = {str(field_of(r, "id")): r for r in records}
    out = []
    for p in preds:
        other = by_id.get(p.predecessor_id)
        if other is None:
            continue
        limit = constraint_date(other, p.relation_type, p.lag_days)
        if limit is None:
            continue
        if p.relation_type in (RelationType.finish_to_start, RelationType.start_to_start):
            if start < limit:
                out.append(f"{p.relation_type.value}: cannot start before {limit.isoformat()}")
        elif end < limit:
            out.append(f"{p.relation_type.value}: cannot finish before {limit.isoformat()}")
    return out


def find_dependents(item_id: str, records: Iterable[Any]) -> list[Any]:
    return [
        r for r in records
        if any(p.predecessor_id == item_id for p in parse_predecessors(field_of(r, "predecessors")))
    ]


_SCHEDULE_FIELDS = ("id", "predecessors", "start_date", "end_date", "duration")


def auto_schedule(record: Any, records: Iterable[Any]) -> dict[str, dt.date] | None:
    """New ``{start_date, end_date}`` placing the item at its earliest start, or None if it already is."""
    start = earliest_start(record, records)
    if start is None:
        return None
    if start == _as_date(field_of(record, "start_date")):
        return None
    duration = field_of(record, "duration") or 1
    return {"start_date": start, "end_date": start + dt.timedelta(days=duration - 1)}


def auto_schedule_dependents(item_id: str, records: Iterable[Any]) -> dict[str, dict[str, dt.date]]:
    """Forward pass from ``item_id`` through its dependents.

    Works on copies of the records, so callers decide whether to write the
    returned ``{id: {start_date, end_date}}`` patches. Each item's dependents
    are expanded once, which keeps loops in stored data finite.
    """
    working = {str(field_of(r, "id")): {f: field_of(r, f) for f in _SCHEDULE_FIELDS} for r in records}
    patches: dict[str, dict[str, dt.date]] = {}
    processed: set[str] = set()
    stack = [item_id]
    while stack:
        cur = stack.pop()
        if cur in processed:
            continue
        processed.add(cur)
        for dep in find_dependents(cur, working.values()):
            patch = auto_schedule(dep, working.values())
            if patch is None:
                continue
            dep.update(patch)
            patches[str(dep["id"])] = patch
            stack.append(str(dep["id"]))
    return patches


def propose_schedule(item_id: str, records: Iterable[Any]) -> dict[str, dict[str, dt.date]]:
    """The item itself auto-scheduled first, then everything downstream of it."""
    records = list(records)
    record = next((r for r in records if str(field_of(r, "id")) == item_id), None)
    if record is None:
        return {}
    own = auto_schedule(record, records)
    if own is None:
        return auto_schedule_dependents(item_id, records)
    snapshot = []
    for r in records:
        view = {f: field_of(r, f) for f in _SCHEDULE_FIELDS}
        if str(view["id"]) == item_id:
            view.update(own)
        snapshot.append(view)
    changes = {item_id: own}
    changes.update(auto_schedule_dependents(item_id, snapshot))
    return changes
