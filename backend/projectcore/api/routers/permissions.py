from fastapi import APIRouter, Depends

from projectcore.core.deps import get_permissions
from projectcore.schemas.permissions import ModuleAccessOut, SubModuleAccessOut, PermissionSummaryOut
from projectcore.services.permissions import PermissionResolver

router = APIRouter()

@router.get("/me", response_model=PermissionSummaryOut)
def my_permissions(perms: PermissionResolver = Depends(get_permissions)):
    modules, subs = perms.summary()
    return PermissionSummaryOut(
        company_id=perms.company_id,
        user_id=perms.user_id,
        grants_loaded=perms.loaded,
        default_policy=perms.default_policy.value,
        modules=modules,
        sub_modules=subs,
    )

@router.get("/modules/{module_id}", response_model=ModuleAccessOut)
def module_access(module_id: str, perms: PermissionResolver = Depends(get_permissions)):
    return ModuleAccessOut(module_id=module_id, has_access=perms.has_module_access(module_id))

@router.get("/modules/{module_id}/{sub_module_id}", response_model=SubModuleAccessOut)
def sub_module_access(module_id: str, sub_module_id: str, perms: PermissionResolver = Depends(get_permissions)):
    return SubModuleAccessOut(
        module_id=module_id,
        sub_module_id=sub_module_id,
        access_level=perms.sub_module_access_level(module_id, sub_module_id),
        can_view=perms.can_view(module_id, sub_module_id),
        can_edit=perms.can_edit(module_id, sub_module_id),
    )
