"""
Database utilities and connection management.

WHAT: SQLite storage for the local reference data service
WHY: Local mode and tests need a real persistence layer with canonical ids
HOW: SQLAlchemy sync engine with WAL mode on file databases, StaticPool for
     in-memory databases, session scope context manager
"""

from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import settings
from ..utils.logger import get_logger

logger = get_logger(__name__)

# Base for models
Base = declarative_base()


def _is_memory(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///:memory:")


def build_engine(url: str | None = None) -> Engine:
    """
    Create an engine for url (defaults to settings.DATABASE_URL).

    File-backed SQLite gets its parent directory created and WAL enabled.
    In-memory SQLite shares one connection so every session sees the same data.
    """
    url = url or settings.DATABASE_URL

    if _is_memory(url):
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=settings.DEBUG,
            future=True,
        )
    else:
        if url.startswith("sqlite:///"):
            data_dir = Path(url.replace("sqlite:///", "")).parent
            data_dir.mkdir(parents=True, exist_ok=True)
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False} if url.startswith("sqlite") else {},
            echo=settings.DEBUG,
            future=True,
        )

    if url.startswith("sqlite"):
        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            if not _is_memory(url):
                cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False, autoflush=False, autocommit=False)


@contextmanager
def session_scope(factory: sessionmaker):
    """
    Context manager for a database session.

    Usage:
        with session_scope(factory) as db:
            db.add(row)

    Commits on success, rolls back on any exception.
    """
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(engine: Engine) -> None:
    """Create all tables."""
    # Import models so they register on Base.metadata
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    logger.info(f"Database initialized: {engine.url}")


def ping_database(engine: Engine) -> dict:
    """
    Check database connectivity.

    Returns:
        Dict with status and info
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
        return {"available": True, "url": str(engine.url), "error": None}
    except Exception as e:
        logger.error(f"Database ping failed: {e}")
        return {"available": False, "url": str(engine.url), "error": str(e)}
