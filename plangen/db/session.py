from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager

from loguru import logger
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from plangen.config.settings import settings
from plangen.db.models import Base


def _is_postgresql(url: str) -> bool:
    return "postgresql" in url.lower() or "postgres" in url.lower()


def _validate_postgresql_driver() -> None:
    """Validate the PostgreSQL driver is installed before SQLAlchemy tries to import it."""
    try:
        import psycopg2  # noqa: F401
    except ImportError as e:
        logger.error("PostgreSQL driver (psycopg2) is not installed. Install with: pip install 'plangen[postgres]'")
        raise ImportError("PostgreSQL driver required. Install with: pip install psycopg2-binary") from e


def create_db_engine(url: str) -> Engine:
    """Create an engine with connection args suited to the backend."""
    connect_args = {}
    if "sqlite" in url.lower():
        connect_args = {"check_same_thread": False}
        if url in {"sqlite://", "sqlite:///:memory:"}:
            # One shared connection, otherwise every worker thread sees its own empty database
            return create_engine(url, connect_args=connect_args, poolclass=StaticPool)
    elif _is_postgresql(url):
        _validate_postgresql_driver()
        connect_args = {"connect_timeout": 10, "application_name": "plangen"}

    return create_engine(url, connect_args=connect_args, echo=False, pool_pre_ping=True)


# Lazy initialization to avoid import-time database connections
_engine: Engine | None = None
_SessionLocal: sessionmaker[Session] | None = None


def get_engine() -> Engine:
    """Get or create the database engine from settings.database_url."""
    global _engine
    if _engine is None:
        logger.info("Initializing database engine", database_url=settings.database_url.split("@")[-1])
        if not _is_postgresql(settings.database_url):
            logger.warning("Using SQLite database (local development only)")
        _engine = create_db_engine(settings.database_url)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=get_engine(), expire_on_commit=False)
    return _SessionLocal


@contextmanager
def session_scope(factory: sessionmaker[Session] | None = None) -> Generator[Session, None, None]:
    """Session context manager: commit on success, roll back and re-raise on error."""
    session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        logger.debug("Rolling back database session")
        session.rollback()
        raise
    finally:
        session.close()


def init_db(engine: Engine | None = None) -> None:
    """Create the jobs table and its indexes if they do not exist."""
    engine = engine or get_engine()
    Base.metadata.create_all(engine)
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    logger.info("Job tables ready")
