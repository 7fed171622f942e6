# import all models for Alembic
from projectcore.db.models.wbs import WBSItem
from projectcore.db.models.permission import UserModulePermission, AccessLevel
