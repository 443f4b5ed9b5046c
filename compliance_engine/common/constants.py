"""Enums and constants for the compliance engine."""

from __future__ import annotations

import enum
from fractions import Fraction


# ── Organization ────────────────────────────────────────────────────

class OrgLevel(str, enum.Enum):
    employee = "employee"
    team = "team"
    leader = "leader"
    region = "region"
    country = "country"


# Display prefix used by anonymized labels ("Team A", "Region B", ...)
LEVEL_LABELS: dict[str, str] = {
    OrgLevel.team.value: "Team",
    OrgLevel.leader.value: "Leader",
    OrgLevel.region.value: "Region",
    OrgLevel.country.value: "Country",
    "location": "Location",
}


# ── Auth / Roles ────────────────────────────────────────────────────

class RoleTier(str, enum.Enum):
    team = "team"
    department = "department"
    organization = "organization"


# Lower rank = narrower view. A caller may only ever narrow.
ROLE_TIER_RANK: dict[RoleTier, int] = {
    RoleTier.team: 0,
    RoleTier.department: 1,
    RoleTier.organization: 2,
}

# Level of the node a tier's grant is rooted at (organization: whole forest)
ROLE_TIER_ROOT_LEVEL: dict[RoleTier, OrgLevel] = {
    RoleTier.team: OrgLevel.team,
    RoleTier.department: OrgLevel.leader,
}


# ── Queries ─────────────────────────────────────────────────────────

class Dimension(str, enum.Enum):
    team = "team"
    leader = "leader"
    region = "region"
    country = "country"
    location = "location"


class Granularity(str, enum.Enum):
    day = "day"
    week = "week"
    month = "month"


class QueryOutcome(str, enum.Enum):
    success = "success"
    suppressed_all = "suppressed_all"
    rejected = "rejected"
    invalid = "invalid"


# ── Compliance tiers ────────────────────────────────────────────────

class ComplianceTier(str, enum.Enum):
    exceeding = "exceeding"
    meeting = "meeting"
    approaching = "approaching"
    below = "below"
    insufficient_data = "insufficient_data"


# Lower bound of each tier, inclusive; checked top-down
TIER_CUT_POINTS: tuple[tuple[Fraction, ComplianceTier], ...] = (
    (Fraction(75, 100), ComplianceTier.exceeding),
    (Fraction(70, 100), ComplianceTier.meeting),
    (Fraction(65, 100), ComplianceTier.approaching),
)


# ── Calendars ───────────────────────────────────────────────────────

# ISO weekday numbers (Mon=1 .. Sun=7)
DEFAULT_WEEKEND: frozenset[int] = frozenset({6, 7})

WEEKEND_DAYS: dict[str, frozenset[int]] = {
    "AE": frozenset({6, 7}),
    "SA": frozenset({5, 6}),
    "EG": frozenset({5, 6}),
    "IL": frozenset({5, 6}),
    "QA": frozenset({5, 6}),
    "KW": frozenset({5, 6}),
    "IR": frozenset({5}),
}

WEEKDAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


# ── Misc constants ──────────────────────────────────────────────────

DEFAULT_SUPPRESSION_THRESHOLD = 6
RATIO_DECIMALS = 4
