"""Immutable domain records produced by ingestion and consumed by recompute."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Optional

from compliance_engine.compliance.window import DateWindow


@dataclass(frozen=True)
class Employee:
    employee_id: str
    manager_id: str
    hire_date: date
    termination_date: Optional[date] = None
    location: Optional[str] = None

    def active_window(self, window: DateWindow) -> Optional[DateWindow]:
        """The part of *window* during which the employee was employed."""
        return window.clip(self.hire_date, self.termination_date)


@dataclass(frozen=True)
class PresenceRecord:
    employee_id: str
    date: date
    location: Optional[str] = None


@dataclass(frozen=True)
class LeaveRecord:
    employee_id: str
    date: date


@dataclass(frozen=True)
class Holiday:
    scope: str
    date: date
    name: Optional[str] = None
