from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from projectcore.core.config import settings

# SQLite needs this for the threadpool FastAPI runs sync endpoints in
connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True, connect_args=connect_args)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
