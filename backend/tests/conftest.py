import os

# must be set before projectcore.core.config is imported
os.environ.setdefault("ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SEED_DEMO", "false")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from projectcore.db.base import Base
from projectcore.db import models  # noqa: F401
from projectcore.services.changefeed import change_feed

COMPANY = "11111111-1111-1111-1111-111111111111"
OTHER_COMPANY = "22222222-2222-2222-2222-222222222222"
PROJECT = "33333333-3333-3333-3333-333333333333"


@pytest.fixture
def db():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    session = Session()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def events():
    received = []
    unsubscribe = change_feed.subscribe("wbs_items", None, received.append)
    yield received
    unsubscribe()


@pytest.fixture
def client(db, tmp_path, monkeypatch):
    from fastapi.testclient import TestClient
    from projectcore.core.config import settings
    from projectcore.core.deps import get_db
    from projectcore.main import app

    monkeypatch.setattr(settings, "EXPORT_DIR", str(tmp_path / "exports"))
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth(user_id: str) -> dict:
    from projectcore.core.security import create_access_token
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}
