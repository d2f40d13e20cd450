"""
SQLAlchemy engine, session and declarative base for the prayer clock store.

The database file comes from database.path in the config, falling back to
~/.prayer_clock/prayer_clock.db. The scheduler, the background task timers and
the API thread all share one engine, so SQLite connections are opened without
the same-thread check and in WAL mode.
"""
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, declarative_base, sessionmaker

logger = logging.getLogger(__name__)

Base = declarative_base()

DEFAULT_DATA_DIR = Path.home() / ".prayer_clock"

_engine = None
_SessionLocal = None


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Context manager for a single DB session. Commits on success, rolls back on error."""
    if _SessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    session = _SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def _resolve_db_url(config_data: Optional[dict]) -> str:
    path = ((config_data or {}).get("database") or {}).get("path")
    if path:
        path = Path(path).expanduser().resolve()
    else:
        path = DEFAULT_DATA_DIR / "prayer_clock.db"
    path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{path}"


def _set_sqlite_pragmas(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.close()


def init_db(config_data: Optional[dict] = None, db_url: Optional[str] = None) -> None:
    """
    Create the engine and any missing tables. A second call is a no-op until
    shutdown_db() has run.

    db_url overrides database.path from config_data.
    """
    global _engine, _SessionLocal

    if _engine is not None:
        logger.debug("Database already initialized")
        return

    db_url = db_url or _resolve_db_url(config_data)
    is_sqlite = db_url.startswith("sqlite")
    _engine = create_engine(
        db_url,
        future=True,
        connect_args={"check_same_thread": False} if is_sqlite else {},
    )
    if is_sqlite and ":memory:" not in db_url:
        event.listen(_engine, "connect", _set_sqlite_pragmas)

    # register tables with Base
    from prayer_clock.core import models as _core_models  # noqa: F401
    from prayer_clock.times import models as _times_models  # noqa: F401

    Base.metadata.create_all(_engine)
    _SessionLocal = sessionmaker(bind=_engine, autoflush=False, expire_on_commit=False)
    logger.info(f"Database initialized: {db_url}")


def shutdown_db() -> None:
    """Dispose the engine so init_db() can be called again."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
        logger.info("Database engine disposed")
    _engine = None
    _SessionLocal = None
