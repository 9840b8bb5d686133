# coachhq/db.py
from contextlib import contextmanager
import logging

from sqlalchemy import create_engine, event
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import sessionmaker, declarative_base

from .config import DATABASE_URL
from .errors import StorageError

log = logging.getLogger(__name__)

Base = declarative_base()

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
    future=True,
)

engine = None


# ── Engine binding ───────────────────────────────
def configure(url: str = DATABASE_URL, **engine_kwargs):
    """(Re)bind the session factory to a database URL."""
    global engine
    if url.startswith("sqlite"):
        connect_args = engine_kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        connect_args.setdefault("timeout", 30)
        engine_kwargs["connect_args"] = connect_args
    else:
        engine_kwargs.setdefault("pool_pre_ping", True)

    new_engine = create_engine(url, future=True, **engine_kwargs)
    if url.startswith("sqlite"):
        event.listen(new_engine, "connect", _sqlite_pragmas)

    if engine is not None:
        engine.dispose()
    engine = new_engine
    SessionLocal.configure(bind=engine)
    log.info("[DB] bound to %s", new_engine.url.render_as_string(hide_password=True))
    return engine


def _sqlite_pragmas(dbapi_conn, _record):
    cur = dbapi_conn.cursor()
    cur.execute("PRAGMA foreign_keys=ON")
    cur.close()


def init_db():
    """Create tables for every model (idempotent)."""
    from . import models  # noqa: F401  (registers tables on Base)

    if engine is None:
        configure()
    Base.metadata.create_all(bind=engine)


# ── Context managers ─────────────────────────────
@contextmanager
def get_session():
    """Provide a transactional scope: commit on success, rollback on any error."""
    if engine is None:
        configure()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except (OperationalError, InterfaceError) as e:
        session.rollback()
        log.error("[DB] store failure, rolled back: %s", e)
        raise StorageError("Storage unavailable") from e
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

