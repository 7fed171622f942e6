from fastapi import Depends, HTTPException, Query, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy.orm import Session

from projectcore.core.config import settings
from projectcore.core.errors import PermissionDenied
from projectcore.core.logging import logger
from projectcore.core.security import decode_token
from projectcore.crud.permissions import list_user_permissions
from projectcore.db.session import SessionLocal
from projectcore.services.permissions import PermissionResolver

# Tokens are issued by the identity provider; there is no login endpoint here
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token", auto_error=False)

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def get_current_user_id(token: str | None = Depends(oauth2_scheme)) -> str | None:
    if not token:
        return None
    try:
        payload = decode_token(token)
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return payload.get("sub")

def get_permissions(
    company_id: str = Query(...),
    db: Session = Depends(get_db),
    user_id: str | None = Depends(get_current_user_id),
) -> PermissionResolver:
    grants = list_user_permissions(db, user_id, company_id) if user_id else None
    return PermissionResolver(
        grants,
        default_policy=settings.PERMISSION_DEFAULT_POLICY,
        user_id=user_id,
        company_id=company_id,
    )

def require_access(module_id: str, sub_module_id: str, edit: bool = False):
    def _dep(perms: PermissionResolver = Depends(get_permissions)) -> PermissionResolver:
        allowed = perms.has_module_access(module_id) and (
            perms.can_edit(module_id, sub_module_id) if edit else perms.can_view(module_id, sub_module_id)
        )
        if not allowed:
            logger.info(
                "permission_denied",
                user_id=perms.user_id,
                company_id=perms.company_id,
                module_id=module_id,
                sub_module_id=sub_module_id,
                edit=edit,
            )
            raise PermissionDenied("Forbidden", module_id=module_id, sub_module_id=sub_module_id)
        return perms
    return _dep
