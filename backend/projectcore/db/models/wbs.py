import datetime as dt
import uuid
from typing import Any
from sqlalchemy import String, Text, ForeignKey, Integer, Float, Boolean, Date, DateTime, JSON
from sqlalchemy.orm import Mapped, mapped_column

from projectcore.db.base import Base
from projectcore.db.models._mixins import TimestampMixin


def new_id() -> str:
    return str(uuid.uuid4())


class WBSItem(Base, TimestampMixin):
    __tablename__ = "wbs_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    project_id: Mapped[str] = mapped_column(String(36), index=True)
    company_id: Mapped[str] = mapped_column(String(36), index=True)
    # No ON DELETE CASCADE: subtrees are removed explicitly by crud.wbs.delete_item
    parent_id: Mapped[str | None] = mapped_column(ForeignKey("wbs_items.id"), nullable=True, index=True)

    wbs_id: Mapped[str] = mapped_column(String(64), index=True)  # e.g. "1.2.3", not unique
    level: Mapped[int] = mapped_column(Integer, default=0)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)

    title: Mapped[str] = mapped_column(String(512))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(String(128), nullable=True)
    priority: Mapped[str | None] = mapped_column(String(32), nullable=True)
    status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    health: Mapped[str | None] = mapped_column(String(32), nullable=True)
    progress_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    at_risk: Mapped[bool] = mapped_column(Boolean, default=False)
    assigned_to: Mapped[str | None] = mapped_column(String(36), nullable=True)

    start_date: Mapped[dt.date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[dt.date | None] = mapped_column(Date, nullable=True)
    duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
    budgeted_cost: Mapped[float | None] = mapped_column(Float, nullable=True)
    actual_cost: Mapped[float | None] = mapped_column(Float, nullable=True)
    progress: Mapped[int] = mapped_column(Integer, default=0)

    # [{"predecessor_id": ..., "relation_type": ..., "lag_days": ...}]
    predecessors: Mapped[list[dict]] = mapped_column(JSON, default=list)
    linked_tasks: Mapped[list[str]] = mapped_column(JSON, default=list)
    # JSON so legacy wrapper objects ({"value": "true"}) can still be read
    is_expanded: Mapped[Any] = mapped_column(JSON, nullable=True, default=True)

    is_task_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    linked_task_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    task_conversion_date: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
