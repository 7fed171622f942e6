import uuid
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel
from sqlalchemy import select, delete
from sqlalchemy.orm import Session, aliased

from projectcore.core.errors import NotFoundError, ValidationError
from projectcore.core.logging import logger
from projectcore.db.models.wbs import WBSItem, new_id
from projectcore.services.changefeed import ChangeEvent, change_feed, INSERT, UPDATE, DELETE
from projectcore.services.wbs.hierarchy import normalize_expanded, next_wbs_code, rebase_wbs_code, renumber
from projectcore.services.wbs.predecessors import (
    build_graph,
    parse_predecessors,
    propose_schedule,
    to_predecessor,
    validate_predecessors,
)

TABLE = WBSItem.__tablename__

DESCRIPTIVE_FIELDS = (
    "title",
    "description",
    "category",
    "priority",
    "status",
    "health",
    "progress_status",
    "at_risk",
    "assigned_to",
    "start_date",
    "end_date",
    "duration",
    "budgeted_cost",
    "actual_cost",
    "progress",
)
# id, tenancy keys, timestamps, children and task-link fields are never taken from a patch
UPDATABLE_FIELDS = set(DESCRIPTIVE_FIELDS) | {"parent_id", "wbs_id", "sort_order", "is_expanded", "predecessors", "linked_tasks"}
# NOT NULL columns: a patch may change them but never clear them
REQUIRED_ON_UPDATE = ("title", "wbs_id", "sort_order", "progress", "at_risk")


def serialize_item(item: WBSItem) -> dict[str, Any]:
    data = {c.name: getattr(item, c.name) for c in WBSItem.__table__.columns}
    data["is_expanded"] = normalize_expanded(data["is_expanded"])
    data["predecessors"] = [p.to_dict() for p in parse_predecessors(data["predecessors"])]
    if not isinstance(data["linked_tasks"], list):
        data["linked_tasks"] = []
    return data


def publish(event: str, item: WBSItem | Mapping[str, Any]) -> None:
    record = serialize_item(item) if isinstance(item, WBSItem) else dict(item)
    change_feed.publish(ChangeEvent(event=event, table=TABLE, record=record))


def commit(db: Session) -> None:
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise


def _as_dict(data: BaseModel | Mapping[str, Any]) -> dict[str, Any]:
    if isinstance(data, BaseModel):
        return data.model_dump(exclude_unset=True)
    return dict(data)


def _is_uuid_or_none(value: Any) -> bool:
    if value is None:
        return True
    if not isinstance(value, str):
        return False
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


def _descendant_ids(items: list[WBSItem], item_id: str) -> list[str]:
    children: dict[str, list[str]] = {}
    for it in items:
        if it.parent_id:
            children.setdefault(it.parent_id, []).append(it.id)
    out: list[str] = []
    seen = {item_id}
    stack = list(children.get(item_id, []))
    while stack:
        cur = stack.pop()
        if cur in seen:
            continue
        seen.add(cur)
        out.append(cur)
        stack.extend(children.get(cur, []))
    return out


def load_items(db: Session, project_id: str, company_id: str | None = None) -> list[WBSItem]:
    q = db.query(WBSItem).filter(WBSItem.project_id == project_id)
    if company_id:
        q = q.filter(WBSItem.company_id == company_id)
    return q.order_by(WBSItem.sort_order, WBSItem.created_at).all()


def get_item(db: Session, item_id: str) -> WBSItem | None:
    return db.get(WBSItem, item_id)


def require_item(db: Session, item_id: str) -> WBSItem:
    item = get_item(db, item_id)
    if item is None:
        raise NotFoundError("WBS item not found", item_id=item_id)
    return item


def create_item(db: Session, data: BaseModel | Mapping[str, Any]) -> WBSItem:
    payload = _as_dict(data)
    missing = [f for f in ("company_id", "project_id", "title") if not payload.get(f)]
    if payload.get("level") is None:
        missing.append("level")
    if missing:
        raise ValidationError("Missing required fields", fields=missing)

    project_id = payload["project_id"]
    parent_id = payload.get("parent_id")
    if not _is_uuid_or_none(parent_id):
        raise ValidationError("parent_id must be a UUID string or null", parent_id=repr(parent_id))

    records = load_items(db, project_id, payload["company_id"])
    by_id = {r.id: r for r in records}
    level = 0
    if parent_id is not None:
        parent = by_id.get(parent_id)
        if parent is None:
            raise ValidationError("Parent not found in project", parent_id=parent_id, project_id=project_id)
        level = (parent.level or 0) + 1
    if payload["level"] != level:
        logger.warning("wbs_level_normalized", project_id=project_id, given=payload["level"], level=level)

    item_id = new_id()
    preds = validate_predecessors(item_id, payload.get("predecessors") or [], build_graph(records))

    sort_order = payload.get("sort_order")
    if sort_order is None:
        siblings = [r.sort_order or 0 for r in records if r.parent_id == parent_id]
        sort_order = max(siblings) + 1 if siblings else 0

    item = WBSItem(
        id=item_id,
        project_id=project_id,
        company_id=payload["company_id"],
        parent_id=parent_id,
        wbs_id=payload.get("wbs_id") or next_wbs_code(records, parent_id),
        level=level,
        sort_order=sort_order,
        predecessors=[p.to_dict() for p in preds],
        linked_tasks=list(payload.get("linked_tasks") or []),
        is_expanded=normalize_expanded(payload.get("is_expanded")),
        is_task_enabled=False,
    )
    for f in DESCRIPTIVE_FIELDS:
        if payload.get(f) is not None:
            setattr(item, f, payload[f])

    db.add(item)
    commit(db)
    db.refresh(item)
    logger.info("wbs_item_created", item_id=item.id, project_id=project_id, wbs_id=item.wbs_id, level=level)
    publish(INSERT, item)
    return item


def update_item(db: Session, item_id: str, data: BaseModel | Mapping[str, Any]) -> WBSItem:
    patch = _as_dict(data)
    item = require_item(db, item_id)

    dropped = sorted(k for k in patch if k not in UPDATABLE_FIELDS)
    if dropped:
        logger.info("wbs_update_fields_ignored", item_id=item_id, fields=dropped)
    patch = {k: v for k, v in patch.items() if k in UPDATABLE_FIELDS}

    if "title" in patch and not patch["title"]:
        raise ValidationError("title cannot be empty", item_id=item_id)
    cleared = [f for f in REQUIRED_ON_UPDATE if f in patch and patch[f] is None]
    if cleared:
        raise ValidationError("Fields cannot be null", item_id=item_id, fields=cleared)
    if "is_expanded" in patch:
        patch["is_expanded"] = normalize_expanded(patch["is_expanded"])

    # all checks run before anything is assigned, so a rejected patch leaves the session clean
    records: list[WBSItem] | None = None
    new_levels: list[tuple[WBSItem, int]] = []
    new_codes: list[tuple[WBSItem, str]] = []
    if "parent_id" in patch:
        new_parent = patch["parent_id"]
        if not _is_uuid_or_none(new_parent):
            # a non-id never reaches the tree
            logger.warning("wbs_parent_id_malformed", item_id=item_id, parent_id=repr(new_parent))
            new_parent = patch["parent_id"] = None
        if new_parent != item.parent_id:
            records = load_items(db, item.project_id, item.company_id)
            by_id = {r.id: r for r in records}
            descendants = _descendant_ids(records, item.id)
            if new_parent is not None:
                if new_parent == item.id or new_parent in descendants:
                    raise ValidationError("Item cannot be moved under itself", item_id=item_id, parent_id=new_parent)
                if new_parent not in by_id:
                    raise ValidationError("Parent not found in project", item_id=item_id, parent_id=new_parent)
            new_level = (by_id[new_parent].level or 0) + 1 if new_parent else 0
            delta = new_level - (item.level or 0)
            new_levels.append((item, new_level))
            if delta:
                new_levels.extend((by_id[d_id], (by_id[d_id].level or 0) + delta) for d_id in descendants)

            # a moved item takes the next code and the last slot under its new parent
            if "sort_order" not in patch:
                siblings = [r.sort_order or 0 for r in records if r.parent_id == new_parent]
                patch["sort_order"] = max(siblings) + 1 if siblings else 0
            if "wbs_id" not in patch:
                code = next_wbs_code(records, new_parent)
                patch["wbs_id"] = code
                for d_id in descendants:
                    rebased = rebase_wbs_code(by_id[d_id].wbs_id, item.wbs_id, code)
                    if rebased is not None:
                        new_codes.append((by_id[d_id], rebased))

    if "predecessors" in patch:
        if records is None:
            records = load_items(db, item.project_id, item.company_id)
        graph = build_graph(records)
        stored = {p.predecessor_id for p in parse_predecessors(item.predecessors)}
        incoming = [to_predecessor(p) for p in patch["predecessors"] or []]
        # stale entries already stored are kept as they are, like add_predecessor does
        validate_predecessors(
            item.id, [p for p in incoming if p.predecessor_id in graph or p.predecessor_id not in stored], graph
        )
        patch["predecessors"] = [p.to_dict() for p in incoming]

    if "linked_tasks" in patch:
        patch["linked_tasks"] = list(patch["linked_tasks"] or [])

    for k, v in patch.items():
        setattr(item, k, v)
    for obj, level in new_levels:
        obj.level = level
    for obj, code in new_codes:
        obj.wbs_id = code
    moved = {obj.id: obj for obj, _ in new_levels + new_codes if obj is not item}

    commit(db)
    db.refresh(item)
    logger.info("wbs_item_updated", item_id=item.id, fields=sorted(patch), moved_descendants=len(moved))
    publish(UPDATE, item)
    for d in moved.values():
        publish(UPDATE, d)
    return item


def _subtree_cte(item_id: str):
    subtree = select(WBSItem.id).where(WBSItem.id == item_id).cte("wbs_subtree", recursive=True)
    child = aliased(WBSItem)
    # UNION (not UNION ALL) so corrupt parent loops still terminate
    return subtree.union(select(child.id).where(child.parent_id == subtree.c.id))


def delete_item(db: Session, item_id: str) -> list[str]:
    """Delete an item and its whole subtree in one transaction. Returns removed ids."""
    item = require_item(db, item_id)
    project_id = item.project_id
    subtree = _subtree_cte(item_id)
    try:
        ids = list(db.execute(select(subtree.c.id)).scalars())
        # a child inserted concurrently still references a deleted id, so the FK fails the
        # whole transaction instead of leaving an orphan
        db.execute(
            delete(WBSItem)
            .where(WBSItem.id.in_(ids))
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("wbs_delete_failed", item_id=item_id, project_id=project_id)
        raise
    db.expire_all()
    logger.info("wbs_subtree_deleted", item_id=item_id, project_id=project_id, count=len(ids))
    for removed in ids:
        publish(DELETE, {"id": removed, "project_id": project_id})
    return ids


def add_predecessor(db: Session, item_id: str, predecessor: BaseModel | Mapping[str, Any]) -> WBSItem:
    item = require_item(db, item_id)
    new = to_predecessor(_as_dict(predecessor))
    graph = build_graph(load_items(db, item.project_id, item.company_id))

    current = parse_predecessors(item.predecessors)
    combined = [p for p in current if p.predecessor_id != new.predecessor_id]
    index = next((i for i, p in enumerate(current) if p.predecessor_id == new.predecessor_id), len(combined))
    combined.insert(index, new)

    # stale entries stay stored but are left out of validation
    validate_predecessors(item.id, [p for p in combined if p.predecessor_id in graph or p is new], graph)

    item.predecessors = [p.to_dict() for p in combined]
    commit(db)
    db.refresh(item)
    logger.info("wbs_predecessor_added", item_id=item.id, predecessor_id=new.predecessor_id,
                relation_type=new.relation_type.value, lag_days=new.lag_days)
    publish(UPDATE, item)
    return item


def remove_predecessor(db: Session, item_id: str, predecessor_id: str) -> WBSItem:
    item = require_item(db, item_id)
    current = parse_predecessors(item.predecessors)
    remaining = [p for p in current if p.predecessor_id != predecessor_id]
    if len(remaining) == len(current):
        raise NotFoundError("Predecessor not set on item", item_id=item_id, predecessor_id=predecessor_id)
    item.predecessors = [p.to_dict() for p in remaining]
    commit(db)
    db.refresh(item)
    logger.info("wbs_predecessor_removed", item_id=item.id, predecessor_id=predecessor_id)
    publish(UPDATE, item)
    return item


def renumber_project(db: Session, project_id: str) -> dict[str, str]:
    records = load_items(db, project_id)
    by_id = {r.id: r for r in records}
    changes = dict(renumber(records))
    if not changes:
        return {}
    for item_id, code in changes.items():
        by_id[item_id].wbs_id = code
    commit(db)
    logger.info("wbs_renumbered", project_id=project_id, changed=len(changes))
    for item_id in changes:
        publish(UPDATE, by_id[item_id])
    return changes


def auto_schedule_item(db: Session, item_id: str) -> dict[str, dict]:
    """Move an item to its earliest start and push its dependents forward.

    Returns ``{id: {start_date, end_date}}`` for every item that moved.
    """
    item = require_item(db, item_id)
    records = load_items(db, item.project_id, item.company_id)
    by_id = {r.id: r for r in records}

    changes = propose_schedule(item.id, records)
    if not changes:
        return {}

    for changed_id, patch in changes.items():
        for k, v in patch.items():
            setattr(by_id[changed_id], k, v)
    commit(db)
    logger.info("wbs_auto_scheduled", item_id=item.id, project_id=item.project_id, moved=len(changes))
    for changed_id in changes:
        publish(UPDATE, by_id[changed_id])
    return changes
