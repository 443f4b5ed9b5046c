"""Snapshot ORM model: ComplianceSnapshotRecord (one row per published version).

``inputs`` keeps the normalized rows and settings the version was computed
from, so a restarted process can rebuild it and check it against ``digest``.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from compliance_engine.database import Base

JSONType = sa.JSON().with_variant(JSONB(), "postgresql")


class ComplianceSnapshotRecord(Base):
    __tablename__ = "compliance_snapshots"

    id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    version: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), unique=True, nullable=False
    )
    digest: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    coverage_start: Mapped[Optional[date]] = mapped_column(sa.Date)
    coverage_end: Mapped[Optional[date]] = mapped_column(sa.Date)
    ingestion_summary: Mapped[dict] = mapped_column(JSONType, nullable=False)
    payload: Mapped[dict] = mapped_column(JSONType, nullable=False)
    inputs: Mapped[dict] = mapped_column(JSONType, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    def __repr__(self) -> str:
        return f"<ComplianceSnapshotRecord {self.version} {self.digest[:12]}>"
