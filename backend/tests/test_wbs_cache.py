from conftest import COMPANY, PROJECT
from projectcore.crud.wbs import create_item, delete_item, load_items, serialize_item, update_item
from projectcore.services.changefeed import ChangeEvent, ChangeFeed, change_feed
from projectcore.services.wbs.cache import WBSCache

def _cache(db):
    cache = WBSCache(PROJECT, lambda pid: [serialize_item(r) for r in load_items(db, pid)])
    cache.attach(change_feed)
    return cache

def test_cache_follows_repository_writes(db):
    cache = _cache(db)
    try:
        assert cache.items() == []
        a = create_item(db, dict(company_id=COMPANY, project_id=PROJECT, title="A", level=0))
        b = create_item(db, dict(company_id=COMPANY, project_id=PROJECT, title="B", level=1, parent_id=a.id))
        update_item(db, b.id, {"title": "B2"})
        assert cache.get(b.id)["title"] == "B2"
        assert [n.id for n in cache.tree().roots[0].children] == [b.id]
        delete_item(db, a.id)
        assert cache.items() == []
    finally:
        cache.detach()

def test_last_write_wins_by_arrival():
    cache = WBSCache(PROJECT, lambda pid: [{"id": "a", "project_id": pid, "title": "A"}])
    cache.reload()
    cache.apply_local("a", {"title": "local"})
    cache.apply_event(ChangeEvent("update", "wbs_items", {"id": "a", "project_id": PROJECT, "title": "remote"}))
    assert cache.get("a")["title"] == "remote"
    cache.apply_local("a", {"title": "local again", "is_expanded": "false", "children": []})
    assert cache.get("a")["title"] == "local again"
    assert cache.get("a")["is_expanded"] is False
    assert "children" not in cache.get("a")

def test_events_are_idempotent_and_filtered():
    cache = WBSCache(PROJECT, lambda pid: [])
    cache.reload()
    insert = ChangeEvent("insert", "wbs_items", {"id": "a", "project_id": PROJECT})
    cache.apply_event(insert)
    cache.apply_event(insert)
    cache.apply_event(ChangeEvent("insert", "wbs_items", {"id": "b", "project_id": "other"}))
    cache.apply_event(ChangeEvent("insert", "tasks", {"id": "c", "project_id": PROJECT}))
    assert [r["id"] for r in cache.items()] == ["a"]
    gone = ChangeEvent("delete", "wbs_items", {"id": "a", "project_id": PROJECT})
    cache.apply_event(gone)
    cache.apply_event(gone)
    assert cache.items() == []

def test_failed_write_recovers_by_reload():
    state = [{"id": "a", "project_id": PROJECT, "title": "server"}]
    cache = WBSCache(PROJECT, lambda pid: state)
    cache.apply_local("a", {"title": "optimistic"})
    cache.reload()
    cache.apply_local("a", {"title": "optimistic"})
    cache.invalidate()
    assert cache.get("a")["title"] == "server"

def test_feed_subscriber_errors_are_contained():
    feed = ChangeFeed()
    seen = []

    def broken(event):
        raise RuntimeError("boom")

    feed.subscribe("wbs_items", None, broken)
    unsubscribe = feed.subscribe("wbs_items", PROJECT, seen.append)
    feed.publish(ChangeEvent("insert", "wbs_items", {"id": "a", "project_id": PROJECT}))
    unsubscribe()
    feed.publish(ChangeEvent("insert", "wbs_items", {"id": "b", "project_id": PROJECT}))
    assert [e.record["id"] for e in seen] == ["a"]
