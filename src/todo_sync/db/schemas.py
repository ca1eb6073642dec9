"""SQLAlchemy ORM models backing the Lakebase document store."""

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy import Index, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class StoredDocument(Base):
    """One document of a collection; fields live in ``data``."""

    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=lambda: str(uuid4()))
    collection: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(default=_utc_now)

    __table_args__ = (
        Index("idx_documents_collection", "collection"),
        Index("idx_documents_data", "data", postgresql_using="gin"),
    )
