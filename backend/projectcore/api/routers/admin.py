from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from projectcore.core.deps import get_db, require_access
from projectcore.crud.permissions import list_company_permissions, upsert_permission
from projectcore.schemas.permissions import UserPermissionIn, UserPermissionOut

router = APIRouter()

@router.get("/permissions", response_model=list[UserPermissionOut])
def permissions(
    company_id: str = Query(...),
    user_id: str | None = Query(None),
    db: Session = Depends(get_db),
    _perms=Depends(require_access("admin", "permissions")),
):
    return list_company_permissions(db, company_id, user_id)

@router.put("/permissions", response_model=UserPermissionOut)
def put_permission(
    data: UserPermissionIn,
    company_id: str = Query(...),
    db: Session = Depends(get_db),
    _perms=Depends(require_access("admin", "permissions", edit=True)),
):
    if data.company_id != company_id:
        raise HTTPException(status_code=400, detail="company_id mismatch")
    return upsert_permission(db, data)
