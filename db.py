from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker


Base = declarative_base()

# Bound by init_engine(); modules may import SessionLocal before the app starts.
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False)

_engine: Optional[Engine] = None


def make_engine(database_url: str) -> Engine:
    url = str(database_url or "").strip()
    if not url:
        raise RuntimeError("Missing DATABASE_URL")

    kwargs: dict[str, Any] = {"pool_pre_ping": True}
    if not url.startswith("sqlite"):
        kwargs.update({"pool_size": 10, "max_overflow": 20, "pool_recycle": 1800})
        return create_engine(url, **kwargs)

    kwargs["connect_args"] = {"check_same_thread": False}
    engine = create_engine(url, **kwargs)

    # pysqlite defers BEGIN on its own, which breaks SAVEPOINT; let SQLAlchemy emit it.
    # IMMEDIATE takes the write lock up front, so SQLite serializes transactions
    # the way SELECT .. FOR UPDATE on the schedule resource does elsewhere.
    @event.listens_for(engine, "connect")
    def _sqlite_connect(dbapi_connection, _record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _sqlite_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def init_engine(database_url: str) -> Engine:
    global _engine

    if _engine is not None:
        _engine.dispose()
    _engine = make_engine(database_url)
    SessionLocal.configure(bind=_engine)
    return _engine


def get_pool_stats() -> dict[str, Any]:
    if _engine is None:
        return {"initialized": False}
    pool = _engine.pool
    out: dict[str, Any] = {"initialized": True, "class": type(pool).__name__}
    for name in ("size", "checkedin", "checkedout", "overflow"):
        fn = getattr(pool, name, None)
        if callable(fn):
            try:
                out[name] = fn()
            except Exception:
                out[name] = None
    return out
