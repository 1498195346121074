"""Database session management with connection pooling"""

from typing import Any, Dict

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from storefront_payments.config import settings


def engine_options(database_url: str) -> Dict[str, Any]:
    """Engine keyword arguments for the given backend"""
    if database_url.startswith("sqlite"):
        # Concurrent confirmations wait on the write lock instead of failing fast
        return {"connect_args": {"check_same_thread": False, "timeout": 30}}

    # Connection pool: max 20 connections, recycle after 1 hour to avoid stale connections
    return {
        "pool_pre_ping": True,
        "pool_size": 10,
        "max_overflow": 10,
        "pool_recycle": 3600,
    }


engine = create_engine(settings.database_url, **engine_options(settings.database_url))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Session:
    """Dependency injection for per-request database sessions"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
