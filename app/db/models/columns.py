# app/db/models/columns.py
from datetime import datetime, timezone
from sqlalchemy import Column, DateTime

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def utc_column(index: bool = False) -> Column:
    """Timezone-aware timestamp column; SQLite stores the UTC wall time without offset"""
    return Column(DateTime(timezone=True), index=index, nullable=False)
