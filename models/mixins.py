from datetime import datetime, timezone
from sqlalchemy import Column, DateTime


def utcnow() -> datetime:
    # Naive UTC: SQLite drops tzinfo, so every timestamp is stored without it
    return datetime.now(timezone.utc).replace(tzinfo=None)


class CreatedAtMixin:
    created_at = Column(DateTime, default=utcnow, nullable=False)
class UpdatedAtMixin:
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
