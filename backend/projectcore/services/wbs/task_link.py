"""Reference between a WBS item and an externally managed task.

Only the link is managed here; the task record itself lives elsewhere.
"""
import datetime as dt
from sqlalchemy.orm import Session

from projectcore.core.errors import ConflictError, ValidationError
from projectcore.core.logging import logger
from projectcore.crud.wbs import commit, publish, require_item
from projectcore.db.models.wbs import WBSItem
from projectcore.services.changefeed import UPDATE


def link_task(db: Session, item_id: str, task_id: str) -> WBSItem:
    if not task_id or not isinstance(task_id, str):
        raise ValidationError("task_id is required", item_id=item_id)
    item = require_item(db, item_id)
    if item.is_task_enabled or item.linked_task_id:
        raise ConflictError(
            "WBS item is already linked to a task; unlink it first",
            item_id=item_id,
            linked_task_id=item.linked_task_id,
        )
    item.is_task_enabled = True
    item.linked_task_id = task_id
    item.task_conversion_date = dt.datetime.now(dt.timezone.utc)
    commit(db)
    db.refresh(item)
    logger.info("wbs_task_linked", item_id=item_id, task_id=task_id)
    publish(UPDATE, item)
    return item


def unlink_task(db: Session, item_id: str) -> WBSItem:
    item = require_item(db, item_id)
    if not item.is_task_enabled and item.linked_task_id is None and item.task_conversion_date is None:
        return item
    previous = item.linked_task_id
    item.is_task_enabled = False
    item.linked_task_id = None
    item.task_conversion_date = None
    commit(db)
    db.refresh(item)
    logger.info("wbs_task_unlinked", item_id=item_id, task_id=previous)
    publish(UPDATE, item)
    return item
