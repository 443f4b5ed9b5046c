"""Inclusive date windows and their partition into trend buckets."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterator, Optional

from compliance_engine.common.constants import Granularity


@dataclass(frozen=True, order=True)
class DateWindow:
    """Closed interval ``[start, end]`` of calendar dates."""

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError(f"window end {self.end} precedes start {self.start}")

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def __iter__(self) -> Iterator[date]:
        d = self.start
        while d <= self.end:
            yield d
            d += timedelta(days=1)

    def __contains__(self, d: object) -> bool:
        return isinstance(d, date) and self.start <= d <= self.end

    def clip(self, start: Optional[date], end: Optional[date]) -> Optional["DateWindow"]:
        """Intersect with ``[start, end]`` (``None`` = unbounded); ``None`` if empty."""
        lo = max(self.start, start) if start else self.start
        hi = min(self.end, end) if end else self.end
        if hi < lo:
            return None
        return DateWindow(lo, hi)

    def previous(self) -> "DateWindow":
        """The window of equal length immediately before this one."""
        return DateWindow(
            self.start - timedelta(days=self.days),
            self.start - timedelta(days=1),
        )

    def key(self) -> str:
        return f"{self.start.isoformat()}..{self.end.isoformat()}"

    def buckets(self, granularity: Granularity) -> list["DateWindow"]:
        """Split into day / ISO-week / calendar-month buckets clipped to the window."""
        out: list[DateWindow] = []
        cursor = self.start
        while cursor <= self.end:
            if granularity == Granularity.day:
                bucket_end = cursor
            elif granularity == Granularity.week:
                bucket_end = cursor + timedelta(days=7 - cursor.isoweekday())
            else:
                bucket_end = month_end(cursor)
            bucket_end = min(bucket_end, self.end)
            out.append(DateWindow(cursor, bucket_end))
            cursor = bucket_end + timedelta(days=1)
        return out


def month_end(d: date) -> date:
    if d.month == 12:
        return date(d.year, 12, 31)
    return date(d.year, d.month + 1, 1) - timedelta(days=1)


def month_windows(start: date, end: date) -> list[DateWindow]:
    """Whole calendar months touching ``[start, end]``."""
    out: list[DateWindow] = []
    cursor = start.replace(day=1)
    while cursor <= end:
        out.append(DateWindow(cursor, month_end(cursor)))
        cursor = month_end(cursor) + timedelta(days=1)
    return out
