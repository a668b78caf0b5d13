"""Database engine and session factory"""

from typing import Any, Dict, Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from flow_gateway.config import settings
from flow_gateway.infrastructure.database.models import Base


def engine_options(database_url: str) -> Dict[str, Any]:
    """SQLite (dev/test) gets no pool sizing; server databases get a bounded pool"""
    if database_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    # Max 20 connections, recycled hourly
    return {
        "pool_pre_ping": True,
        "pool_size": 10,
        "max_overflow": 10,
        "pool_recycle": 3600,
    }


engine: Engine = create_engine(settings.database_url, **engine_options(settings.database_url))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind: Engine = engine) -> None:
    """Create all tables (idempotent)"""
    Base.metadata.create_all(bind=bind)


def get_db() -> Iterator[Session]:
    """Dependency injection for database sessions"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
