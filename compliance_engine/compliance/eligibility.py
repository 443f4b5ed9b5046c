"""Eligibility calculator — workdays an employee was expected in the office.

eligible = days in (window ∩ active span) − weekends − holidays − approved leave
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import AbstractSet, Optional

from compliance_engine.compliance.calendar import CalendarResolver
from compliance_engine.compliance.records import Employee
from compliance_engine.compliance.window import DateWindow


@dataclass(frozen=True)
class EligibleDays:
    dates: frozenset[date]
    approximate: bool = False

    @property
    def count(self) -> int:
        return len(self.dates)


class EligibilityCalculator:
    """Computes eligible-day sets against a fixed calendar."""

    def __init__(self, calendar: CalendarResolver) -> None:
        self.calendar = calendar

    def eligible_dates(
        self,
        employee: Employee,
        window: DateWindow,
        leave_dates: AbstractSet[date] = frozenset(),
        country: Optional[str] = None,
    ) -> EligibleDays:
        active = employee.active_window(window)
        if active is None:
            return EligibleDays(frozenset())

        excluded = self.calendar.resolve(active, employee.location, country)
        blocked = excluded.as_set()
        dates = frozenset(
            d for d in active if d not in blocked and d not in leave_dates
        )
        return EligibleDays(dates, approximate=excluded.approximate)
