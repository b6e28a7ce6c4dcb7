import os
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from issue_tracker.core.config import settings

POOL_SIZE = int(os.environ.get('DB_POOL_SIZE','10'))
MAX_OVERFLOW = int(os.environ.get('DB_MAX_OVERFLOW','20'))


def _engine_kwargs() -> dict:
    if settings.is_sqlite:
        # FastAPI runs sync endpoints in a threadpool
        return {"connect_args": {"check_same_thread": False, "timeout": 30}}
    return {
        "pool_pre_ping": True,
        "pool_recycle": 3600,
        "pool_size": POOL_SIZE,
        "max_overflow": MAX_OVERFLOW,
        "pool_timeout": 30,
    }


engine = create_engine(settings.DATABASE_DSN, **_engine_kwargs())

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
