"""Calendar resolver — non-eligible dates (weekends + holidays) per location.

Weekends are arithmetic (ISO weekday against a per-country weekend table);
holidays come from a per-scope table keyed by country or location code.
A location whose calendar is unknown falls back to the default calendar and
the result is flagged approximate instead of failing the query.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Iterable, Mapping, Optional

from compliance_engine.common.constants import DEFAULT_WEEKEND, WEEKEND_DAYS
from compliance_engine.compliance.window import DateWindow


@dataclass(frozen=True)
class ExcludedDates:
    """Ordered non-eligible dates for one window/location."""

    dates: tuple[date, ...]
    approximate: bool = False

    def as_set(self) -> frozenset[date]:
        return frozenset(self.dates)


def _norm(code: Optional[str]) -> Optional[str]:
    return code.strip().upper() if code and code.strip() else None


class CalendarResolver:
    """Pure lookup over an immutable holiday table."""

    def __init__(
        self,
        holidays: Mapping[str, Iterable[date]],
        default_calendar: str = "US",
    ) -> None:
        self._holidays: dict[str, frozenset[date]] = {
            _norm(scope): frozenset(days) for scope, days in holidays.items() if _norm(scope)
        }
        self.default_calendar = _norm(default_calendar) or "US"

    def is_known(self, location: Optional[str], country: Optional[str] = None) -> bool:
        return any(s in self._holidays for s in (_norm(location), _norm(country)) if s)

    @staticmethod
    def weekend_days(country: Optional[str]) -> frozenset[int]:
        return WEEKEND_DAYS.get(_norm(country) or "", DEFAULT_WEEKEND)

    def holidays_for(self, location: Optional[str], country: Optional[str] = None) -> frozenset[date]:
        found: set[date] = set()
        for scope in (_norm(location), _norm(country)):
            if scope and scope in self._holidays:
                found |= self._holidays[scope]
        return frozenset(found)

    def resolve(
        self,
        window: DateWindow,
        location: Optional[str],
        country: Optional[str] = None,
    ) -> ExcludedDates:
        """Return the excluded dates in *window* for the given location/country."""
        approximate = not self.is_known(location, country)
        if approximate:
            holidays = self._holidays.get(self.default_calendar, frozenset())
            weekend = self.weekend_days(country or self.default_calendar)
        else:
            holidays = self.holidays_for(location, country)
            weekend = self.weekend_days(country)

        excluded = tuple(
            d for d in window if d.isoweekday() in weekend or d in holidays
        )
        return ExcludedDates(dates=excluded, approximate=approximate)
