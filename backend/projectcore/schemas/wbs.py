import datetime as dt
from typing import Any
from pydantic import BaseModel, ConfigDict, Field

from projectcore.services.wbs.predecessors import RelationType


class PredecessorIn(BaseModel):
    predecessor_id: str
    relation_type: RelationType = RelationType.finish_to_start
    lag_days: int = 0  # negative = lead time


class PredecessorOut(PredecessorIn):
    stale: bool = False


class WBSItemBase(BaseModel):
    parent_id: str | None = None
    wbs_id: str | None = None
    sort_order: int | None = None
    title: str | None = None
    description: str | None = None
    category: str | None = None
    priority: str | None = None
    status: str | None = None
    health: str | None = None
    progress_status: str | None = None
    at_risk: bool | None = None
    assigned_to: str | None = None
    start_date: dt.date | None = None
    end_date: dt.date | None = None
    duration: int | None = None
    budgeted_cost: float | None = None
    actual_cost: float | None = None
    progress: int | None = Field(default=None, ge=0, le=100)
    is_expanded: Any = None


class WBSItemCreate(WBSItemBase):
    company_id: str
    project_id: str
    title: str = Field(..., min_length=1)
    level: int = Field(..., ge=0)
    predecessors: list[PredecessorIn] = []
    linked_tasks: list[str] = []


class WBSItemUpdate(WBSItemBase):
    # children/timestamps sent back by clients are dropped, not rejected
    model_config = ConfigDict(extra="ignore")

    predecessors: list[PredecessorIn] | None = None


class WBSItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    project_id: str
    company_id: str
    parent_id: str | None = None
    wbs_id: str
    level: int
    sort_order: int
    title: str
    description: str | None = None
    category: str | None = None
    priority: str | None = None
    status: str | None = None
    health: str | None = None
    progress_status: str | None = None
    at_risk: bool = False
    assigned_to: str | None = None
    start_date: dt.date | None = None
    end_date: dt.date | None = None
    duration: int | None = None
    budgeted_cost: float | None = None
    actual_cost: float | None = None
    progress: int = 0
    predecessors: list[dict] = []
    linked_tasks: list[str] = []
    is_expanded: bool = True
    is_task_enabled: bool = False
    linked_task_id: str | None = None
    task_conversion_date: dt.datetime | None = None
    created_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None


class WBSNodeOut(WBSItemOut):
    children: list["WBSNodeOut"] = []


class AnomalyOut(BaseModel):
    kind: str
    item_id: str
    detail: str | None = None


class WBSTreeOut(BaseModel):
    project_id: str
    items: list[WBSNodeOut]
    total: int
    anomalies: list[AnomalyOut] = []
    stale_predecessors: dict[str, list[str]] = {}
    predecessor_cycles: list[list[str]] = []


class DeleteOut(BaseModel):
    deleted_ids: list[str]


class TaskLinkIn(BaseModel):
    task_id: str = Field(..., min_length=1)


class NextCodeOut(BaseModel):
    parent_id: str | None = None
    wbs_id: str


class RenumberOut(BaseModel):
    changes: dict[str, str]


class SchedulePatchOut(BaseModel):
    start_date: dt.date
    end_date: dt.date


class ScheduleCheckOut(BaseModel):
    item_id: str
    earliest_start: dt.date | None = None
    violations: list[str] = []
    dependents: list[str] = []
    # what auto-scheduling from this item would move, nothing written
    proposed: dict[str, SchedulePatchOut] = {}


class AutoScheduleOut(BaseModel):
    changes: dict[str, SchedulePatchOut]
