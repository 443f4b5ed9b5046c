"""Snapshot Pydantic v2 schemas — recompute summary and version listing."""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from compliance_engine.ingestion.schemas import IngestionSummary


class RecomputeSummary(BaseModel):
    """Outcome of one recompute cycle."""

    version: datetime
    digest: str
    published: bool = Field(..., description="False for dry runs")
    coverage_start: Optional[date] = None
    coverage_end: Optional[date] = None
    org_units: int = 0
    employees: int = 0
    months: int = 0
    ingestion: IngestionSummary


class SnapshotVersionItem(BaseModel):
    """One published snapshot version."""

    model_config = ConfigDict(from_attributes=True)

    version: datetime
    digest: str
    coverage_start: Optional[date] = None
    coverage_end: Optional[date] = None
    is_current: bool = False


class SnapshotListResponse(BaseModel):
    data: list[SnapshotVersionItem]
