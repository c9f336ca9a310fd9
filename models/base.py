"""
Shared model helpers: primary keys, timestamp columns and UTC formatting.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Column, DateTime


def generate_uuid() -> str:
    """String UUID4 used as primary key by every table."""
    return str(uuid.uuid4())


def format_utc_datetime(dt: Optional[datetime]) -> Optional[str]:
    """
    ISO 8601 string for API responses.

    Columns hold naive UTC values (datetime.utcnow), so a 'Z' is appended
    to let the dashboard render local times, e.g. "2025-11-15T09:33:00Z".
    Aware datetimes keep their own offset.
    """
    if dt is None:
        return None
    if dt.tzinfo is not None:
        return dt.isoformat()
    return f"{dt.isoformat()}Z"


class TimestampMixin:
    """created_at / updated_at columns maintained by SQLAlchemy."""

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
