from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine
import os


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands timestamps back without an offset; they were written in UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def get_engine(db_url: Optional[str] = None) -> Engine:
    db_url = db_url or os.getenv("DATABASE_URL", "sqlite:///hotelcore.db")
    if not db_url.startswith("sqlite"):
        return create_engine(db_url, echo=False, pool_pre_ping=True)

    # SQLite writers wait on the file lock instead of failing straight away
    engine = create_engine(db_url, echo=False, connect_args={"check_same_thread": False, "timeout": 30})

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        # Take the write lock up front so check-then-insert runs as one unit
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def init_db(engine: Engine) -> Engine:
    # Import the table modules so their metadata is registered before create_all
    import hotelcore.audit.store  # noqa: F401
    import hotelcore.booking.models  # noqa: F401
    import hotelcore.catalog.models  # noqa: F401
    import hotelcore.notifications.outbox  # noqa: F401

    SQLModel.metadata.create_all(engine)
    return engine
