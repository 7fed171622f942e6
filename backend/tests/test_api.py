import openpyxl
import pytest

from conftest import COMPANY, OTHER_COMPANY, PROJECT, auth
from projectcore.crud.permissions import upsert_permission
from projectcore.db.models.permission import AccessLevel
from projectcore.schemas.permissions import UserPermissionIn

Q = {"company_id": COMPANY}

def _grant(db, user, module, sub, level):
    upsert_permission(db, UserPermissionIn(
        user_id=user, company_id=COMPANY, module_id=module, sub_module_id=sub, access_level=AccessLevel(level),
    ))

def _create(client, title, parent_id=None, level=0, headers=None):
    body = {"company_id": COMPANY, "project_id": PROJECT, "title": title, "level": level, "parent_id": parent_id}
    r = client.post("/wbs", params=Q, json=body, headers=headers or {})
    assert r.status_code == 200, r.text
    return r.json()

def test_healthz(client):
    assert client.get("/healthz").json() == {"status": "ok"}

def test_tree_roundtrip(client):
    a = _create(client, "A")
    b = _create(client, "B", a["id"], 1)
    c = _create(client, "C", a["id"], 1)
    r = client.get("/wbs", params={**Q, "project_id": PROJECT})
    assert r.status_code == 200
    data = r.json()
    assert data["total"] == 3
    assert [n["id"] for n in data["items"]] == [a["id"]]
    assert [n["id"] for n in data["items"][0]["children"]] == [b["id"], c["id"]]
    assert data["anomalies"] == []

def test_patch_and_delete(client):
    a = _create(client, "A")
    b = _create(client, "B", a["id"], 1)
    r = client.patch(f"/wbs/{b['id']}", params=Q, json={"title": "B2", "children": [], "is_expanded": {"value": "false"}})
    assert r.status_code == 200
    assert r.json()["title"] == "B2" and r.json()["is_expanded"] is False
    r = client.delete(f"/wbs/{a['id']}", params=Q)
    assert sorted(r.json()["deleted_ids"]) == sorted([a["id"], b["id"]])
    assert client.get("/wbs/flat", params={**Q, "project_id": PROJECT}).json() == []
    assert client.delete(f"/wbs/{a['id']}", params=Q).status_code == 404

def test_domain_errors_map_to_status_codes(client):
    a = _create(client, "A")
    b = _create(client, "B")
    ok = client.post(f"/wbs/{b['id']}/predecessors", params=Q, json={"predecessor_id": a["id"], "lag_days": 2})
    assert ok.status_code == 200
    assert ok.json()["predecessors"][0]["relation_type"] == "finish_to_start"
    cyc = client.post(f"/wbs/{a['id']}/predecessors", params=Q, json={"predecessor_id": b["id"]})
    assert cyc.status_code == 400
    assert client.post(f"/wbs/{a['id']}/task-link", params=Q, json={"task_id": "t1"}).status_code == 200
    assert client.post(f"/wbs/{a['id']}/task-link", params=Q, json={"task_id": "t2"}).status_code == 409
    assert client.delete(f"/wbs/{a['id']}/task-link", params=Q).json()["linked_task_id"] is None

def test_other_company_cannot_reach_item(client):
    a = _create(client, "A")
    r = client.patch(f"/wbs/{a['id']}", params={"company_id": OTHER_COMPANY}, json={"title": "x"})
    assert r.status_code == 404

def test_other_company_items_cannot_be_linked(client):
    theirs = {"company_id": OTHER_COMPANY, "project_id": PROJECT, "title": "Theirs", "level": 0}
    foreign = client.post("/wbs", params={"company_id": OTHER_COMPANY}, json=theirs).json()
    mine = _create(client, "Mine")
    body = {"company_id": COMPANY, "project_id": PROJECT, "title": "Child", "level": 1, "parent_id": foreign["id"]}
    assert client.post("/wbs", params=Q, json=body).status_code == 400
    r = client.post(f"/wbs/{mine['id']}/predecessors", params=Q, json={"predecessor_id": foreign["id"]})
    assert r.status_code == 400
    tree = client.get("/wbs", params={**Q, "project_id": PROJECT}).json()
    assert tree["total"] == 1 and tree["stale_predecessors"] == {}

@pytest.mark.parametrize("field", ["progress", "sort_order", "wbs_id", "at_risk"])
def test_patch_null_on_required_field_is_rejected(client, field):
    a = _create(client, "A")
    r = client.patch(f"/wbs/{a['id']}", params=Q, json={field: None})
    assert r.status_code == 400
    assert r.json()["context"]["fields"] == [field]

def test_view_only_user_cannot_edit(client, db):
    _grant(db, "viewer", "projects", "wbs", "can_view")
    headers = auth("viewer")
    r = client.post("/wbs", params=Q, headers=headers,
                    json={"company_id": COMPANY, "project_id": PROJECT, "title": "A", "level": 0})
    assert r.status_code == 403
    assert client.get("/wbs", params={**Q, "project_id": PROJECT}, headers=headers).status_code == 200

def test_user_without_rows_gets_view_by_default(client):
    headers = auth("nobody")
    assert client.get("/wbs", params={**Q, "project_id": PROJECT}, headers=headers).status_code == 200
    r = client.post("/wbs", params=Q, headers=headers,
                    json={"company_id": COMPANY, "project_id": PROJECT, "title": "A", "level": 0})
    assert r.status_code == 403

def test_module_denied_blocks_views(client, db):
    _grant(db, "u", "projects", "overview", "no_access")
    _grant(db, "u", "projects", "wbs", "can_edit")
    assert client.get("/wbs/flat", params={**Q, "project_id": PROJECT}, headers=auth("u")).status_code == 200
    _grant(db, "u", "projects", "wbs", "no_access")
    assert client.get("/wbs/flat", params={**Q, "project_id": PROJECT}, headers=auth("u")).status_code == 403

def test_permission_endpoints(client, db):
    _grant(db, "u", "finance", "invoices", "no_access")
    me = client.get("/permissions/me", params=Q, headers=auth("u")).json()
    assert me["grants_loaded"] is True
    assert me["modules"]["finance"] is False and me["modules"]["projects"] is True
    r = client.get("/permissions/modules/projects/wbs", params=Q, headers=auth("u")).json()
    assert r == {"module_id": "projects", "sub_module_id": "wbs", "access_level": "can_view",
                 "can_view": True, "can_edit": False}
    anon = client.get("/permissions/me", params=Q).json()
    assert anon["grants_loaded"] is False and anon["default_policy"] == "allow"

def test_invalid_token_rejected(client):
    r = client.get("/wbs", params={**Q, "project_id": PROJECT}, headers={"Authorization": "Bearer nope"})
    assert r.status_code == 401

def test_admin_upsert_requires_edit(client, db):
    body = {"user_id": "u2", "company_id": COMPANY, "module_id": "finance", "sub_module_id": None, "access_level": "can_edit"}
    assert client.put("/admin/permissions", params=Q, json=body, headers=auth("u2")).status_code == 403
    _grant(db, "boss", "admin", "permissions", "can_edit")
    r = client.put("/admin/permissions", params=Q, json=body, headers=auth("boss"))
    assert r.status_code == 200
    rows = client.get("/admin/permissions", params={**Q, "user_id": "u2"}, headers=auth("boss")).json()
    assert [row["module_id"] for row in rows] == ["finance"]

def test_next_code_renumber_and_export(client):
    a = _create(client, "A")
    _create(client, "A1", a["id"], 1)
    r = client.get("/wbs/next-code", params={**Q, "project_id": PROJECT, "parent_id": a["id"]})
    assert r.json()["wbs_id"] == "1.2"
    client.patch(f"/wbs/{a['id']}", params=Q, json={"wbs_id": "7.0"})
    changes = client.post("/wbs/renumber", params={**Q, "project_id": PROJECT}).json()["changes"]
    assert changes[a["id"]] == "1.0"

    r = client.get("/wbs/export", params={**Q, "project_id": PROJECT})
    assert r.status_code == 200
    path = r.headers["content-disposition"].split("filename=")[-1].strip('"')
    assert path.startswith("wbs_")

def test_export_file_contents(db, tmp_path):
    from projectcore.crud.wbs import create_item, load_items, serialize_item
    from projectcore.services.exports.exporter import export_wbs_xlsx
    from projectcore.services.wbs.hierarchy import build_hierarchy

    a = create_item(db, dict(company_id=COMPANY, project_id=PROJECT, title="Stage", level=0))
    b = create_item(db, dict(company_id=COMPANY, project_id=PROJECT, title="Work", level=1, parent_id=a.id))
    create_item(db, dict(company_id=COMPANY, project_id=PROJECT, title="Next", level=1, parent_id=a.id,
                         predecessors=[{"predecessor_id": b.id, "relation_type": "SS", "lag_days": 2}]))
    tree = build_hierarchy([serialize_item(r) for r in load_items(db, PROJECT)])
    out = export_wbs_xlsx(tree, tmp_path / "wbs.xlsx")
    ws = openpyxl.load_workbook(out).active
    rows = list(ws.iter_rows(values_only=True))
    assert rows[0][:2] == ("wbs_id", "title")
    assert [r[0] for r in rows[1:]] == ["1.0", "1.1", "1.2"]
    assert rows[2][1] == "    Work"
    assert rows[3][11] == "1.1SS+2"

def test_schedule_preview_and_auto_schedule(client):
    a = _create(client, "A")
    client.patch(f"/wbs/{a['id']}", params=Q, json={"start_date": "2025-03-01", "end_date": "2025-03-05"})
    b = _create(client, "B")
    client.patch(f"/wbs/{b['id']}", params=Q, json={"duration": 2, "predecessors": [{"predecessor_id": a["id"]}]})

    check = client.get(f"/wbs/{b['id']}/schedule", params=Q).json()
    assert check["earliest_start"] == "2025-03-06"
    assert check["proposed"] == {b["id"]: {"start_date": "2025-03-06", "end_date": "2025-03-07"}}

    r = client.post(f"/wbs/{a['id']}/auto-schedule", params=Q)
    assert r.status_code == 200
    assert r.json()["changes"] == {b["id"]: {"start_date": "2025-03-06", "end_date": "2025-03-07"}}
    flat = {i["id"]: i for i in client.get("/wbs/flat", params={**Q, "project_id": PROJECT}).json()}
    assert flat[b["id"]]["start_date"] == "2025-03-06"
    assert client.get(f"/wbs/{b['id']}/schedule", params=Q).json()["violations"] == []
