"""Per-project WBS cache driven by local optimistic writes and change-feed events.

Conflict policy is last-write-wins by arrival: whichever of a local patch or a
remote event for the same id is applied last is what the cache holds. There
are no version checks. When a remote write fails, call ``reload`` rather than
trying to undo the optimistic patch.
"""
import threading
from collections.abc import Callable, Iterable
from typing import Any

from projectcore.core.logging import logger
from projectcore.services.changefeed import ChangeEvent, ChangeFeed, DELETE
from projectcore.services.wbs.hierarchy import Hierarchy, build_hierarchy, normalize_expanded

TABLE = "wbs_items"

Loader = Callable[[str], Iterable[dict[str, Any]]]


class WBSCache:
    def __init__(self, project_id: str, loader: Loader):
        self.project_id = project_id
        self._loader = loader
        self._lock = threading.RLock()
        self._items: dict[str, dict[str, Any]] = {}
        self._unsubscribe: Callable[[], None] | None = None
        self.stale = True

    def reload(self) -> None:
        records = list(self._loader(self.project_id))
        with self._lock:
            self._items = {str(r["id"]): dict(r) for r in records}
            self.stale = False
        logger.info("wbs_cache_reloaded", project_id=self.project_id, items=len(records))

    def invalidate(self) -> None:
        with self._lock:
            self.stale = True

    def items(self) -> list[dict[str, Any]]:
        if self.stale:
            self.reload()
        with self._lock:
            return [dict(r) for r in self._items.values()]

    def get(self, item_id: str) -> dict[str, Any] | None:
        if self.stale:
            self.reload()
        with self._lock:
            rec = self._items.get(item_id)
            return dict(rec) if rec is not None else None

    def tree(self) -> Hierarchy:
        return build_hierarchy(self.items(), project_id=self.project_id)

    def apply_local(self, item_id: str, patch: dict[str, Any]) -> None:
        """Optimistic patch before the remote write resolves."""
        patch = {k: v for k, v in patch.items() if k != "children"}
        if "is_expanded" in patch:
            patch["is_expanded"] = normalize_expanded(patch["is_expanded"])
        with self._lock:
            if item_id in self._items:
                self._items[item_id].update(patch)

    def remove_local(self, item_ids: Iterable[str]) -> None:
        with self._lock:
            for item_id in item_ids:
                self._items.pop(item_id, None)

    def apply_event(self, event: ChangeEvent) -> None:
        if event.table != TABLE or event.project_id != self.project_id:
            return
        item_id = str(event.record.get("id"))
        with self._lock:
            if event.event == DELETE:
                self._items.pop(item_id, None)
            else:
                # insert/update: the full record wins over whatever is cached
                self._items[item_id] = dict(event.record)

    def attach(self, feed: ChangeFeed) -> None:
        self.detach()
        self._unsubscribe = feed.subscribe(TABLE, self.project_id, self.apply_event)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
