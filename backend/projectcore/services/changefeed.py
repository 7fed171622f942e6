"""In-process change feed.

Writers publish after commit; subscribers filter by table and project. Delivery
is treated as at-least-once and unordered across tables, so consumers must be
idempotent.
"""
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from projectcore.core.logging import logger

INSERT = "insert"
UPDATE = "update"
DELETE = "delete"


@dataclass
class ChangeEvent:
    event: str  # insert|update|delete
    table: str
    record: dict[str, Any] = field(default_factory=dict)

    @property
    def project_id(self) -> str | None:
        return self.record.get("project_id")


Callback = Callable[[ChangeEvent], None]


class ChangeFeed:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subs: list[tuple[str, str | None, Callback]] = []

    def subscribe(self, table: str, project_id: str | None, callback: Callback) -> Callable[[], None]:
        entry = (table, project_id, callback)
        with self._lock:
            self._subs.append(entry)

        def unsubscribe() -> None:
            with self._lock:
                if entry in self._subs:
                    self._subs.remove(entry)

        return unsubscribe

    def publish(self, event: ChangeEvent) -> None:
        with self._lock:
            targets = [
                cb for table, project_id, cb in self._subs
                if table == event.table and (project_id is None or project_id == event.project_id)
            ]
        for cb in targets:
            try:
                cb(event)
            except Exception:
                # one broken subscriber must not block the others or the writer
                logger.exception("changefeed_subscriber_failed", table=event.table, event=event.event)


change_feed = ChangeFeed()
