"""
Database connection and session management.

Provides the database engine, session factory, and helper functions
for database operations.
"""

from contextlib import contextmanager
from functools import lru_cache
from typing import Generator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool

from jobfeed.config.settings import get_settings
from jobfeed.catalog.models import Base


def create_sqlite_engine(url: str, echo: bool = False) -> Engine:
    """
    Create a SQLite engine whose transactions support SAVEPOINT.

    pysqlite defers BEGIN until the first DML statement, which breaks
    nested transactions; the driver's own transaction handling is turned
    off and BEGIN is emitted explicitly instead.
    """
    engine = create_engine(url, echo=echo, future=True)

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


@lru_cache()
def get_engine() -> Engine:
    """
    Get or create the process-wide database engine.

    PostgreSQL connections are pooled with QueuePool; pool_pre_ping drops
    stale connections before an import checks one out. SQLite keeps the
    dialect's default pool.
    """
    settings = get_settings()

    if settings.database_url.startswith("sqlite"):
        return create_sqlite_engine(settings.database_url, echo=settings.debug)

    return create_engine(
        settings.database_url,
        poolclass=QueuePool,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,
        pool_recycle=3600,
        echo=settings.debug,
        echo_pool=False,
        future=True
    )


@lru_cache()
def get_session_factory() -> sessionmaker:
    """Session factory bound to the process-wide engine."""
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=get_engine(),
        future=True
    )


def init_db() -> None:
    """
    Initialize database by creating all tables.

    Production deployments run the Alembic migrations instead.
    """
    Base.metadata.create_all(bind=get_engine())


def get_db() -> Generator[Session, None, None]:
    """
    Dependency function for FastAPI to get database sessions.

    Yields:
        Database session

    Usage:
        @router.get("/jobs/count")
        def count_jobs(db: Session = Depends(get_db)):
            return db.query(Job).count()
    """
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_session() -> Generator[Session, None, None]:
    """
    Context manager for database sessions.

    Usage:
        with get_db_session() as db:
            db.query(ImportRun).all()
    """
    db = get_session_factory()()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def check_database_connection(engine: Engine = None) -> bool:
    """
    Check if database connection is healthy.

    Returns:
        True if connection is successful, False otherwise
    """
    try:
        with (engine or get_engine()).connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False
