from enum import Enum
from sqlalchemy import String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from projectcore.db.base import Base
from projectcore.db.models._mixins import TimestampMixin


class AccessLevel(str, Enum):
    no_access = "no_access"
    can_view = "can_view"
    can_edit = "can_edit"


class UserModulePermission(Base, TimestampMixin):
    __tablename__ = "user_module_permissions"
    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "company_id",
            "module_id",
            "sub_module_id",
            name="uq_user_module_permission",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36), index=True)
    company_id: Mapped[str] = mapped_column(String(36), index=True)
    module_id: Mapped[str] = mapped_column(String(64), index=True)
    sub_module_id: Mapped[str | None] = mapped_column(String(64), nullable=True)  # None = module-level row
    access_level: Mapped[str] = mapped_column(String(16), default=AccessLevel.can_view.value)
