from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from projectcore.core.deps import get_db, require_access
from projectcore.crud.wbs import (
    add_predecessor,
    auto_schedule_item,
    create_item,
    delete_item,
    load_items,
    remove_predecessor,
    renumber_project,
    require_item,
    serialize_item,
    update_item,
)
from projectcore.db.models.wbs import WBSItem
from projectcore.schemas.wbs import (
    AnomalyOut,
    AutoScheduleOut,
    DeleteOut,
    NextCodeOut,
    PredecessorIn,
    RenumberOut,
    ScheduleCheckOut,
    TaskLinkIn,
    WBSItemCreate,
    WBSItemOut,
    WBSItemUpdate,
    WBSNodeOut,
    WBSTreeOut,
)
from projectcore.services.exports.exporter import default_export_path, export_wbs_xlsx
from projectcore.services.wbs.hierarchy import WBSNode, build_hierarchy, next_wbs_code
from projectcore.services.wbs.predecessors import (
    build_graph,
    earliest_start,
    find_cycles,
    find_dependents,
    propose_schedule,
    schedule_violations,
    stale_predecessors,
)
from projectcore.services.wbs.task_link import link_task, unlink_task

router = APIRouter()

MODULE, SUB_MODULE = "projects", "wbs"
can_view = require_access(MODULE, SUB_MODULE)
can_edit = require_access(MODULE, SUB_MODULE, edit=True)


def _company_item(db: Session, item_id: str, company_id: str) -> WBSItem:
    item = require_item(db, item_id)
    if item.company_id != company_id:
        # same answer as a missing id: do not leak other tenants' items
        raise HTTPException(status_code=404, detail="WBS item not found")
    return item


def _out(item: WBSItem) -> WBSItemOut:
    return WBSItemOut(**serialize_item(item))


def _node_out(node: WBSNode) -> WBSNodeOut:
    data = serialize_item(node.record)
    data.update(level=node.level, is_expanded=node.is_expanded)
    return WBSNodeOut(**data, children=[_node_out(c) for c in node.children])


@router.get("", response_model=WBSTreeOut)
def get_tree(
    project_id: str = Query(...),
    company_id: str = Query(...),
    db: Session = Depends(get_db),
    _perms=Depends(can_view),
):
    records = load_items(db, project_id, company_id)
    hierarchy = build_hierarchy(records, project_id=project_id)
    known = {r.id for r in records}
    stale: dict[str, list[str]] = {}
    for r in records:
        ids = stale_predecessors(r, known)
        if ids:
            stale[r.id] = ids
    return WBSTreeOut(
        project_id=project_id,
        items=[_node_out(n) for n in hierarchy.roots],
        total=hierarchy.size,
        anomalies=[AnomalyOut(kind=a.kind, item_id=a.item_id, detail=a.detail) for a in hierarchy.anomalies],
        stale_predecessors=stale,
        predecessor_cycles=find_cycles(build_graph(records)),
    )


@router.get("/flat", response_model=list[WBSItemOut])
def get_flat(
    project_id: str = Query(...),
    company_id: str = Query(...),
    db: Session = Depends(get_db),
    _perms=Depends(can_view),
):
    return [_out(r) for r in load_items(db, project_id, company_id)]


@router.get("/next-code", response_model=NextCodeOut)
def get_next_code(
    project_id: str = Query(...),
    company_id: str = Query(...),
    parent_id: str | None = Query(None),
    db: Session = Depends(get_db),
    _perms=Depends(can_view),
):
    records = load_items(db, project_id, company_id)
    return NextCodeOut(parent_id=parent_id, wbs_id=next_wbs_code(records, parent_id))


@router.get("/export")
def export_tree(
    project_id: str = Query(...),
    company_id: str = Query(...),
    db: Session = Depends(get_db),
    _perms=Depends(can_view),
):
    hierarchy = build_hierarchy(
        [serialize_item(r) for r in load_items(db, project_id, company_id)], project_id=project_id
    )
    path = export_wbs_xlsx(hierarchy, default_export_path(f"wbs_{project_id}", "xlsx"))
    return FileResponse(
        path,
        filename=path.name,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    )


@router.post("", response_model=WBSItemOut)
def post_item(
    data: WBSItemCreate,
    company_id: str = Query(...),
    db: Session = Depends(get_db),
    _perms=Depends(can_edit),
):
    if data.company_id != company_id:
        raise HTTPException(status_code=400, detail="company_id mismatch")
    return _out(create_item(db, data))


@router.patch("/{item_id}", response_model=WBSItemOut)
def patch_item(
    item_id: str,
    data: WBSItemUpdate,
    company_id: str = Query(...),
    db: Session = Depends(get_db),
    _perms=Depends(can_edit),
):
    _company_item(db, item_id, company_id)
    return _out(update_item(db, item_id, data))


@router.delete("/{item_id}", response_model=DeleteOut)
def delete_item_endpoint(
    item_id: str,
    company_id: str = Query(...),
    db: Session = Depends(get_db),
    _perms=Depends(can_edit),
):
    _company_item(db, item_id, company_id)
    return DeleteOut(deleted_ids=delete_item(db, item_id))


@router.post("/{item_id}/predecessors", response_model=WBSItemOut)
def post_predecessor(
    item_id: str,
    data: PredecessorIn,
    company_id: str = Query(...),
    db: Session = Depends(get_db),
    _perms=Depends(can_edit),
):
    _company_item(db, item_id, company_id)
    return _out(add_predecessor(db, item_id, data))


@router.delete("/{item_id}/predecessors/{predecessor_id}", response_model=WBSItemOut)
def delete_predecessor(
    item_id: str,
    predecessor_id: str,
    company_id: str = Query(...),
    db: Session = Depends(get_db),
    _perms=Depends(can_edit),
):
    _company_item(db, item_id, company_id)
    return _out(remove_predecessor(db, item_id, predecessor_id))


@router.get("/{item_id}/schedule", response_model=ScheduleCheckOut)
def get_schedule_check(
    item_id: str,
    company_id: str = Query(...),
    db: Session = Depends(get_db),
    _perms=Depends(can_view),
):
    item = _company_item(db, item_id, company_id)
    records = load_items(db, item.project_id, company_id)
    return ScheduleCheckOut(
        item_id=item_id,
        earliest_start=earliest_start(item, records),
        violations=schedule_violations(item, records),
        dependents=[r.id for r in find_dependents(item_id, records)],
        proposed=propose_schedule(item_id, records),
    )


@router.post("/{item_id}/auto-schedule", response_model=AutoScheduleOut)
def post_auto_schedule(
    item_id: str,
    company_id: str = Query(...),
    db: Session = Depends(get_db),
    _perms=Depends(can_edit),
):
    _company_item(db, item_id, company_id)
    return AutoScheduleOut(changes=auto_schedule_item(db, item_id))


@router.post("/{item_id}/task-link", response_model=WBSItemOut)
def post_task_link(
    item_id: str,
    data: TaskLinkIn,
    company_id: str = Query(...),
    db: Session = Depends(get_db),
    _perms=Depends(can_edit),
):
    _company_item(db, item_id, company_id)
    return _out(link_task(db, item_id, data.task_id))


@router.delete("/{item_id}/task-link", response_model=WBSItemOut)
def delete_task_link(
    item_id: str,
    company_id: str = Query(...),
    db: Session = Depends(get_db),
    _perms=Depends(can_edit),
):
    _company_item(db, item_id, company_id)
    return _out(unlink_task(db, item_id))


@router.post("/renumber", response_model=RenumberOut)
def post_renumber(
    project_id: str = Query(...),
    company_id: str = Query(...),
    db: Session = Depends(get_db),
    _perms=Depends(can_edit),
):
    if any(r.company_id != company_id for r in load_items(db, project_id)):
        raise HTTPException(status_code=403, detail="Forbidden")
    return RenumberOut(changes=renumber_project(db, project_id))
