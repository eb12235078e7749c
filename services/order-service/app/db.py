import os
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, text, event
from sqlalchemy.orm import sessionmaker, DeclarativeBase, Session
from sqlalchemy.pool import NullPool

DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL is not set")
DB_SCHEMA = os.getenv("DB_SCHEMA", "orders")

# sqlite (local/dev/tests): a request's session may be opened and closed on different threads
_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    DATABASE_URL,
    poolclass=NullPool,   # Lambda-friendly default
    pool_pre_ping=True,
    connect_args=_connect_args,
)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


class Base(DeclarativeBase):
    pass


def _quote_ident(ident: str) -> str:
    return '"' + ident.replace('"', '""') + '"'


def _uses_schemas() -> bool:
    return engine.dialect.name == "postgresql"


@event.listens_for(engine, "connect")
def _set_search_path(dbapi_conn, _):
    if not _uses_schemas():
        return
    schema = _quote_ident(DB_SCHEMA)
    cur = dbapi_conn.cursor()
    cur.execute(f"SET search_path TO {schema}")
    cur.close()


def init_schema():
    """
    Optional: prefer deploy-time migrations instead of runtime.
    Keep for local/dev if you want.
    """
    if _uses_schemas():
        schema = _quote_ident(DB_SCHEMA)
        with engine.begin() as conn:
            conn.execute(text(f"CREATE SCHEMA IF NOT EXISTS {schema}"))
            conn.execute(text(f"SET search_path TO {schema}"))
    Base.metadata.create_all(bind=engine)


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """
    All-or-nothing unit of work on an existing session.

    Everything executed inside the block is committed together when it exits
    cleanly; any exception rolls the whole unit back and is re-raised.
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
