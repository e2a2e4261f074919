"""Database engine creation and table initialization."""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from vision_engine.database.models import Base

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///data/vision_engine.db"


def get_engine(database_url: str = DEFAULT_DATABASE_URL, echo: bool = False) -> Engine:
    """
    Create a database engine.

    Each coordinator owns its engine; there is no process-wide engine.

    Args:
        database_url: Database connection URL.
        echo: If True, log all SQL statements.

    Returns:
        SQLAlchemy engine instance.
    """
    kwargs = {"echo": echo, "pool_pre_ping": True}

    if database_url.startswith("sqlite"):
        # Stream workers use the engine from pool threads.
        kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        else:
            db_path = database_url.replace("sqlite:///", "")
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(database_url, **kwargs)

    if database_url.startswith("sqlite"):
        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    logger.info(f"Database engine created: {database_url}")
    return engine


def get_session_factory(engine: Engine) -> sessionmaker:
    """
    Create a session factory bound to an engine.

    Loaded objects stay readable after commit so they can be returned to
    callers outside the session.
    """
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@contextmanager
def session_scope(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """
    Provide a transactional scope around a series of operations.

    Commits on success, rolls back on error, always closes.
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(database_url: str = DEFAULT_DATABASE_URL, echo: bool = False) -> Engine:
    """
    Initialize the database by creating all tables.

    Args:
        database_url: Database connection URL.
        echo: If True, log all SQL statements.

    Returns:
        SQLAlchemy engine instance.
    """
    engine = get_engine(database_url, echo)
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created successfully")
    return engine
