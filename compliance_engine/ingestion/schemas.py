"""Ingestion Pydantic v2 schemas — per-row validation and the drop summary.

Naming conventions:
  - *In       → one validated input row
  - *Summary  → counts reported back from a recompute cycle
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from compliance_engine.common.constants import OrgLevel
from compliance_engine.compliance.presence import utc_date


# ═════════════════════════════════════════════════════════════════════
# Input rows
# ═════════════════════════════════════════════════════════════════════


class _Row(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True, str_strip_whitespace=True)


class OrgUnitIn(_Row):
    node_id: str = Field(..., min_length=1, max_length=64)
    parent_id: Optional[str] = Field(None, max_length=64)
    level: OrgLevel
    name: Optional[str] = None
    code: Optional[str] = Field(None, max_length=20)

    @field_validator("parent_id", "code", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("level")
    @classmethod
    def _not_employee(cls, v: OrgLevel) -> OrgLevel:
        if v == OrgLevel.employee:
            raise ValueError("employees belong in the roster stream, not org units")
        return v


class EmployeeIn(_Row):
    employee_id: str = Field(..., min_length=1, max_length=64)
    manager_id: str = Field(..., min_length=1, max_length=64)
    location: Optional[str] = Field(None, max_length=20)
    hire_date: date
    termination_date: Optional[date] = None

    @model_validator(mode="after")
    def _termination_after_hire(self) -> "EmployeeIn":
        if self.termination_date is not None and self.termination_date < self.hire_date:
            raise ValueError("termination_date precedes hire_date")
        return self


class PresenceIn(_Row):
    employee_id: str = Field(..., min_length=1, max_length=64)
    occurred_at: Union[datetime, date]
    location: Optional[str] = Field(None, max_length=20)

    @property
    def day(self) -> date:
        if isinstance(self.occurred_at, datetime):
            return utc_date(self.occurred_at)
        return self.occurred_at


class LeaveIn(_Row):
    employee_id: str = Field(..., min_length=1, max_length=64)
    leave_date: date
    status: str = "approved"


class HolidayIn(_Row):
    scope: str = Field(..., min_length=1, max_length=20)
    holiday_date: date
    name: Optional[str] = None


# ═════════════════════════════════════════════════════════════════════
# Summary
# ═════════════════════════════════════════════════════════════════════


class StreamSummary(BaseModel):
    """Row accounting for one input stream."""

    read: int = 0
    accepted: int = 0
    dropped: dict[str, int] = Field(
        default_factory=dict,
        description="Dropped row counts keyed by reason (malformed, duplicate, ...)",
    )

    def drop(self, reason: str) -> None:
        self.dropped[reason] = self.dropped.get(reason, 0) + 1

    @property
    def dropped_total(self) -> int:
        return sum(self.dropped.values())


class IngestionSummary(BaseModel):
    """Per-stream counts for one recompute cycle."""

    org_units: StreamSummary = Field(default_factory=StreamSummary)
    employees: StreamSummary = Field(default_factory=StreamSummary)
    presence: StreamSummary = Field(default_factory=StreamSummary)
    leave: StreamSummary = Field(default_factory=StreamSummary)
    holidays: StreamSummary = Field(default_factory=StreamSummary)

    @property
    def dropped_total(self) -> int:
        return sum(
            s.dropped_total
            for s in (self.org_units, self.employees, self.presence, self.leave, self.holidays)
        )
