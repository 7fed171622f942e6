from sqlalchemy.orm import Session

from projectcore.db.models.permission import UserModulePermission
from projectcore.schemas.permissions import UserPermissionIn


def list_user_permissions(db: Session, user_id: str, company_id: str) -> list[UserModulePermission]:
    return (
        db.query(UserModulePermission)
        .filter(UserModulePermission.user_id == user_id, UserModulePermission.company_id == company_id)
        .order_by(UserModulePermission.id)
        .all()
    )


def list_company_permissions(db: Session, company_id: str, user_id: str | None = None) -> list[UserModulePermission]:
    q = db.query(UserModulePermission).filter(UserModulePermission.company_id == company_id)
    if user_id:
        q = q.filter(UserModulePermission.user_id == user_id)
    return q.order_by(UserModulePermission.user_id, UserModulePermission.module_id, UserModulePermission.id).all()


def upsert_permission(db: Session, data: UserPermissionIn) -> UserModulePermission:
    row = (
        db.query(UserModulePermission)
        .filter(
            UserModulePermission.user_id == data.user_id,
            UserModulePermission.company_id == data.company_id,
            UserModulePermission.module_id == data.module_id,
            UserModulePermission.sub_module_id.is_(None)
            if data.sub_module_id is None
            else UserModulePermission.sub_module_id == data.sub_module_id,
        )
        .one_or_none()
    )
    if row is None:
        row = UserModulePermission(
            user_id=data.user_id,
            company_id=data.company_id,
            module_id=data.module_id,
            sub_module_id=data.sub_module_id,
        )
        db.add(row)
    row.access_level = data.access_level.value
    db.commit()
    db.refresh(row)
    return row
