"""Compliance analytics Pydantic v2 schemas — query contract for the dashboard
renderer and the assistant collaborator.

Naming conventions:
  - *Request  → request bodies
  - *Response → response bodies
  - *Point / *Result → items inside a response

Suppressed entries carry ``suppressed=True`` and ``null`` numbers; they
never carry a real node id.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field

from compliance_engine.common.constants import ComplianceTier, QueryOutcome, RoleTier


# ═════════════════════════════════════════════════════════════════════
# POST /query
# ═════════════════════════════════════════════════════════════════════


class ComplianceQueryRequest(BaseModel):
    """Structured query. Caller identity comes from the token, not the body."""

    dimension: str = Field(
        ...,
        max_length=20,
        description="team | leader | region | country | location",
    )
    start: date
    end: date
    granularity: str = Field(
        default="month",
        max_length=10,
        description="Trend bucket size: day | week | month",
    )
    drill_down_node: Optional[str] = Field(
        None,
        max_length=64,
        description="Restrict to this node (must lie inside the caller's scope)",
    )
    view_as: Optional[RoleTier] = Field(
        None,
        description="Narrower role tier view; can never widen the caller's scope",
    )
    snapshot_version: Optional[datetime] = Field(
        None,
        description="Serve from an older published snapshot",
    )


class TrendPoint(BaseModel):
    """One bucket of a group's trend."""

    start: date
    end: date
    ratio: Optional[float] = None
    suppressed: bool = False
    tier: ComplianceTier


class GroupResult(BaseModel):
    """One anonymized group in the requested dimension."""

    label: str = Field(..., description="Rank-derived label, e.g. 'Team A'")
    node_id: Optional[str] = Field(None, description="Real id; only for visible groups")
    ratio: Optional[float] = None
    member_count: Optional[int] = None
    suppressed: bool = False
    tier: ComplianceTier
    benchmark_delta: Optional[float] = None
    trend: list[TrendPoint] = Field(default_factory=list)


class ScopeTotal(BaseModel):
    """Aggregate over the whole resolved scope."""

    ratio: Optional[float] = None
    member_count: Optional[int] = None
    suppressed: bool = False
    tier: ComplianceTier


class QueryMetadata(BaseModel):
    outcome: QueryOutcome
    snapshot_version: datetime = Field(..., description="Last-updated timestamp")
    role_tier: RoleTier
    suppression_threshold: int
    suppressed_labels: list[str] = Field(default_factory=list)
    approximate_calendar: bool = False


class ComplianceQueryResponse(BaseModel):
    outcome: QueryOutcome
    dimension: str
    granularity: str
    window_start: date
    window_end: date
    groups: list[GroupResult]
    total: ScopeTotal
    metadata: QueryMetadata


# ═════════════════════════════════════════════════════════════════════
# GET /summary
# ═════════════════════════════════════════════════════════════════════


class TopGroup(BaseModel):
    label: str
    node_id: str
    ratio: float


class WeekdayPoint(BaseModel):
    weekday: str
    ratio: Optional[float] = None
    suppressed: bool = False
    tier: ComplianceTier


class ComplianceSummaryResponse(BaseModel):
    """KPI cards for the dashboard header."""

    outcome: QueryOutcome
    window_start: date
    window_end: date
    current: ScopeTotal
    previous: ScopeTotal
    change: Optional[float] = Field(
        None, description="Current minus previous ratio (both must be visible)"
    )
    benchmark: float
    benchmark_delta: Optional[float] = None
    top_location: Optional[TopGroup] = None
    weekday_profile: list[WeekdayPoint] = Field(default_factory=list)
    metadata: QueryMetadata
