"""SQLAlchemy models for depgov."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, Index, String, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from depgov.utils import utcnow


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class Record(Base):
    """One stored engine document (policy, assessment, violation, ...).

    Documents are kept as their ``to_dict()`` JSON form. ``kind`` separates
    the logical stores that share this table.
    """

    __tablename__ = "records"

    kind: Mapped[str] = mapped_column(String(50), primary_key=True)
    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(255), nullable=False)

    # Secondary identity used for get-or-insert (e.g. violation dedupe key)
    dedupe_key: Mapped[Optional[str]] = mapped_column(String(1024))

    payload: Mapped[dict] = mapped_column(JSON, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("kind", "dedupe_key", name="uq_record_kind_dedupe_key"),
        Index("ix_record_kind_tenant", "kind", "tenant_id"),
    )
