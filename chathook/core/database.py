"""
Database engine and session management.

The webhook server and the batch loader may write to the same SQLite file at
once, so file databases run in WAL mode with a busy timeout.
"""
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import sessionmaker, Session, declarative_base

from chathook.core.config import get_settings
from chathook.core.logging import get_logger

logger = get_logger(__name__)

Base = declarative_base()

# Initialized lazily on first use
_engine = None
_SessionLocal = None

SQLITE_BUSY_TIMEOUT_MS = 5000


def sqlite_file_path(database_url: str) -> Optional[Path]:
    """Filesystem path of a SQLite URL; None for other backends and in-memory databases."""
    if not database_url.startswith("sqlite"):
        return None
    _, _, path = database_url.partition(":///")
    if not path or path == ":memory:":
        return None
    return Path(path)


def _enable_sqlite_wal(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
    cursor.close()


def get_engine():
    """Get or create the database engine."""
    global _engine
    if _engine is None:
        settings = get_settings()
        url = settings.database_url

        connect_args = {}
        if url.startswith("sqlite"):
            connect_args["check_same_thread"] = False

        db_file = sqlite_file_path(url)
        if db_file is not None and not db_file.parent.exists():
            db_file.parent.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created database directory: {db_file.parent}")

        _engine = create_engine(
            url,
            connect_args=connect_args,
            echo=settings.debug,
            pool_pre_ping=True,
        )
        if db_file is not None:
            event.listen(_engine, "connect", _enable_sqlite_wal)

        logger.info("Database engine created", extra={"extra_data": {"database_url": url}})

    return _engine


def get_session_factory():
    """Get or create the session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        # Rows are handed to response models and events after commit
        _SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=get_engine(),
        )
    return _SessionLocal


def get_db() -> Generator[Session, None, None]:
    """Request-scoped session dependency."""
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """Session for background tasks and the batch loader."""
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Create the message table and its indexes if missing."""
    from chathook.models import message  # noqa: F401 - Import to register models

    Base.metadata.create_all(bind=get_engine())
    logger.info("Database tables created")


def check_db_connection() -> bool:
    """Check if the message store answers queries."""
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False
