"""Compliance calculator — per-employee ratios, group rollups, tier classification.

Group ratios are always Σ present ÷ Σ eligible over the members, never the
mean of member ratios.
"""

from __future__ import annotations

from dataclasses import dataclass
from fractions import Fraction
from typing import Any, Iterable, Optional

from compliance_engine.common.constants import (
    RATIO_DECIMALS,
    TIER_CUT_POINTS,
    ComplianceTier,
)
from compliance_engine.compliance.window import DateWindow


@dataclass(frozen=True)
class EmployeeCompliance:
    """One employee's counts for one window."""

    employee_id: str
    window: DateWindow
    present_days: int
    eligible_days: int
    approximate: bool = False

    @property
    def excluded(self) -> bool:
        return self.eligible_days == 0

    @property
    def ratio(self) -> Optional[float]:
        if self.excluded:
            return None
        return self.present_days / self.eligible_days


@dataclass(frozen=True)
class ComplianceMetric:
    """Unsuppressed aggregate for one scope and window."""

    scope_id: str
    window: DateWindow
    numerator: int
    denominator: int
    member_count: int
    approximate: bool = False
    suppressed: bool = False

    @property
    def ratio(self) -> Optional[float]:
        if self.denominator == 0:
            return None
        return self.numerator / self.denominator

    @property
    def tier(self) -> ComplianceTier:
        return classify(self.numerator, self.denominator)

    def to_canonical(self) -> dict[str, Any]:
        return {
            "scope_id": self.scope_id,
            "window": self.window.key(),
            "numerator": self.numerator,
            "denominator": self.denominator,
            "member_count": self.member_count,
            "approximate": self.approximate,
        }


def rollup(
    scope_id: str,
    window: DateWindow,
    members: Iterable[EmployeeCompliance],
) -> ComplianceMetric:
    """Pure rollup; employees with zero eligible days are not members."""
    numerator = denominator = count = 0
    approximate = False
    for m in members:
        if m.excluded:
            continue
        numerator += m.present_days
        denominator += m.eligible_days
        count += 1
        approximate = approximate or m.approximate
    return ComplianceMetric(
        scope_id=scope_id,
        window=window,
        numerator=numerator,
        denominator=denominator,
        member_count=count,
        approximate=approximate,
    )


def classify(numerator: int, denominator: int) -> ComplianceTier:
    """Tier from the exact fraction; each lower bound is inclusive."""
    if denominator <= 0:
        return ComplianceTier.insufficient_data
    value = Fraction(numerator, denominator)
    for cut, tier in TIER_CUT_POINTS:
        if value >= cut:
            return tier
    return ComplianceTier.below


def round_ratio(ratio: Optional[float]) -> Optional[float]:
    return None if ratio is None else round(ratio, RATIO_DECIMALS)


def benchmark_delta(ratio: Optional[float], benchmark: float) -> Optional[float]:
    if ratio is None:
        return None
    return round(ratio - benchmark, RATIO_DECIMALS)
