from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase, Session
from sqlalchemy.pool import StaticPool

from core.config import settings


class Base(DeclarativeBase):
    pass


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine for the given URL.

    SQLite gets foreign keys switched on and, for in-memory databases, a
    StaticPool so every session sees the same data.
    """
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            echo=echo,
            future=True,
            connect_args={"check_same_thread": False, "timeout": 30},
            poolclass=StaticPool if ":memory:" in database_url else None,
        )

        # Enable foreign key constraints for SQLite
        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    # For PostgreSQL and other databases
    return create_engine(database_url, echo=echo, future=True, pool_pre_ping=True)


engine = build_engine(settings.DATABASE_URL, echo=settings.SQLALCHEMY_ECHO)

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def unit_of_work(db: Session) -> Generator:
    """Commit everything done on ``db`` inside the block, or nothing at all."""
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise


def init_db() -> None:
    # Import models so that metadata includes every table
    import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def close_db() -> None:
    engine.dispose()
