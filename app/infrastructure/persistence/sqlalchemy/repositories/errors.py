from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from .....exceptions import TransientIOError


@contextmanager
def store_errors(action: str):
    """Surface database failures as TransientIOError."""
    try:
        yield
    except SQLAlchemyError as e:
        raise TransientIOError(f"Database {action} failed: {e.__class__.__name__}")


# Times are written as UTC. SQLite drops the offset, so reads may come back naive.

def to_db_time(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def from_db_time(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def begin_write(session: Session) -> None:
    """
    Open the session's transaction with the database write lock held.

    SQLite ignores FOR UPDATE and pysqlite defers BEGIN until the first write,
    so a read-check-write would run unlocked. BEGIN IMMEDIATE takes the lock up
    front and concurrent writers wait on the busy timeout. Other databases rely
    on the row lock of the following ``with_for_update`` select.
    """
    connection = session.connection()
    if connection.dialect.name == "sqlite":
        connection.exec_driver_sql("BEGIN IMMEDIATE")
