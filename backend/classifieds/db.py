from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from classifieds.config import database_url


def make_engine(url: str, **kw):
    if url.startswith("sqlite"):
        # Endpoints run in a threadpool; sqlite must allow cross-thread use.
        engine = create_engine(url, connect_args={"check_same_thread": False}, pool_pre_ping=True, **kw)

        @event.listens_for(engine, "connect")
        def _sqlite_fk_pragma(dbapi_conn, _record):
            cur = dbapi_conn.cursor()
            cur.execute("PRAGMA foreign_keys=ON")
            cur.close()

        return engine
    return create_engine(url, pool_pre_ping=True, **kw)


ENGINE = make_engine(database_url())
SessionLocal = sessionmaker(bind=ENGINE, class_=Session, expire_on_commit=False, autoflush=False, autocommit=False)


@contextmanager
def session_scope():
    """
    One transaction per unit of work: commit on success, rollback on any error.
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
