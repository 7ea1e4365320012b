"""
StoredValue model - namespaced JSON values persisted by the engine.
"""

from datetime import datetime, timezone

from sqlalchemy import String, Text, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from config import STORAGE_SETTINGS
from models.base import Base


class StoredValue(Base):
    """One key/value pair written through services.storage.SqlStore."""
    __tablename__ = STORAGE_SETTINGS.table_name

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        return f"<StoredValue(key='{self.key}')>"
