from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from app.qms.db import enable_sqlite_foreign_keys, engine_options


def create_script_engine(db_url: str) -> Engine:
    """Same engine settings as the app, without needing an app instance."""
    engine = create_engine(db_url, **engine_options(db_url))
    if db_url.startswith("sqlite"):
        enable_sqlite_foreign_keys(engine)
    return engine


@contextmanager
def script_session(db_url: str) -> Generator[Session, None, None]:
    """Session for one-off scripts: commits on success, disposes the engine afterwards."""
    engine = create_script_engine(db_url)
    sm = sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()
