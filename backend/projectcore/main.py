from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from projectcore.core.config import settings
from projectcore.core.errors import DomainError
from projectcore.core.logging import configure_logging, logger
from projectcore.api.router import api_router
from projectcore.db.session import engine
from projectcore.db.base import Base
from projectcore.db import models  # noqa: F401  (register tables on Base.metadata)
from projectcore.services.seed import seed_demo

def create_app() -> FastAPI:
    configure_logging(settings.ENV, settings.LOG_LEVEL)
    app = FastAPI(title="Project Core (WBS & permissions)", version="0.1.0")

    origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(DomainError)
    async def _domain_error(request: Request, exc: DomainError):
        logger.info("domain_error", error=type(exc).__name__, message=exc.message, path=request.url.path, **exc.context)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "context": exc.context})

    @app.get("/healthz")
    def healthz():
        return {"status": "ok"}

    @app.on_event("startup")
    def _startup():
        # Ensure tables exist for dev-only convenience; in prod rely on alembic
        if settings.ENV == "dev":
            Base.metadata.create_all(bind=engine)
        if settings.SEED_DEMO and settings.ENV == "dev":
            seed_demo()

    app.include_router(api_router)
    logger.info("app_started", env=settings.ENV, permission_default_policy=settings.PERMISSION_DEFAULT_POLICY)
    return app

app = create_app()
