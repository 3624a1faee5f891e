"""
Engine, session factory and the request-scoped session for billflow
"""
from functools import lru_cache

from sqlalchemy import create_engine, text
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from billflow.config import get_settings


class Base(DeclarativeBase):
    pass


@lru_cache
def get_engine():
    return create_engine(get_settings().get_sqlalchemy_url(), pool_pre_ping=True)


@lru_cache
def get_session_factory():
    # Services flush, use cases commit
    return sessionmaker(bind=get_engine(), autoflush=False)


def get_db():
    """FastAPI dependency: one session per request, closed afterwards."""
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


def check_db_connection() -> None:
    """Raises sqlalchemy.exc.OperationalError when the database is unreachable."""
    with get_engine().connect() as conn:
        conn.execute(text("SELECT 1"))
