from pydantic import BaseModel, ConfigDict

from projectcore.db.models.permission import AccessLevel


class UserPermissionIn(BaseModel):
    user_id: str
    company_id: str
    module_id: str
    sub_module_id: str | None = None
    access_level: AccessLevel


class UserPermissionOut(UserPermissionIn):
    model_config = ConfigDict(from_attributes=True)

    id: int


class ModuleAccessOut(BaseModel):
    module_id: str
    has_access: bool


class SubModuleAccessOut(BaseModel):
    module_id: str
    sub_module_id: str
    access_level: AccessLevel
    can_view: bool
    can_edit: bool


class PermissionSummaryOut(BaseModel):
    company_id: str
    user_id: str | None = None
    grants_loaded: bool
    default_policy: str
    modules: dict[str, bool]
    sub_modules: dict[str, dict[str, AccessLevel]]
