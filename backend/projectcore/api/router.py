from fastapi import APIRouter
from projectcore.api.routers import wbs, permissions, admin

api_router = APIRouter()
api_router.include_router(wbs.router, prefix="/wbs", tags=["wbs"])
api_router.include_router(permissions.router, prefix="/permissions", tags=["permissions"])
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
