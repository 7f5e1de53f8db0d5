from contextlib import contextmanager
from datetime import datetime, timezone
import logging

from sqlalchemy import create_engine, event, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker, declarative_base
from .config import settings
from .exceptions import ContentionError

logger = logging.getLogger(__name__)

# SQLSTATEs for lock_not_available, deadlock_detected, serialization_failure
LOCK_ERROR_CODES = {"55P03", "40P01", "40001"}


def build_engine(url: str, **kwargs):
    """Create an engine; SQLite gets write-locking transactions."""
    connect_args = kwargs.pop("connect_args", {})
    is_sqlite = url.startswith("sqlite")
    if is_sqlite:
        connect_args.setdefault("check_same_thread", False)
        connect_args.setdefault("timeout", settings.LOCK_TIMEOUT_MS / 1000)

    eng = create_engine(
        url,
        connect_args=connect_args,
        pool_pre_ping=not is_sqlite,
        echo=settings.DEBUG,
        **kwargs
    )

    if is_sqlite:
        @event.listens_for(eng, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            # Let SQLAlchemy emit BEGIN itself
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()

        @event.listens_for(eng, "begin")
        def do_begin(conn):
            # SQLite has no row locks; take the write lock up front instead
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    return eng


# Create engine
engine = build_engine(settings.DATABASE_URL)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for models
Base = declarative_base()

# Dependency for FastAPI
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc(value: datetime) -> datetime:
    """Normalize an incoming datetime to naive UTC."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def is_lock_error(exc: OperationalError) -> bool:
    orig = getattr(exc, "orig", None)
    if getattr(orig, "pgcode", None) in LOCK_ERROR_CODES:
        return True
    return "database is locked" in str(orig or exc).lower()


@contextmanager
def transaction(db: Session):
    """
    One atomic unit of work.

    Commits on success; any exception rolls everything back. Lock waits are
    bounded by LOCK_TIMEOUT_MS and surface as ContentionError.
    """
    try:
        if db.get_bind().dialect.name == "postgresql":
            db.execute(text(f"SET LOCAL lock_timeout = '{int(settings.LOCK_TIMEOUT_MS)}ms'"))
        yield db
        db.commit()
    except OperationalError as e:
        db.rollback()
        if is_lock_error(e):
            logger.warning(f"Transaction aborted on lock contention: {e.orig}")
            raise ContentionError("Resource is busy, please retry") from e
        raise
    except Exception:
        db.rollback()
        raise
