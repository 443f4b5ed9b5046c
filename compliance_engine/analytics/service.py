"""Aggregation query service — the single entry point for compliance reads.

One query runs: validate → resolve the caller's subtree → per-employee
facts → roll up by dimension → suppress → anonymize → shape. Validation
happens before a snapshot is touched, and a query pins one snapshot for
its whole lifetime.

Suppression decisions come from the whole forest first (so a group hidden
in one query stays hidden in every other query that could publish it),
then from the response itself: groups are published next to the scope
total, so the complement runs again against that total. Location groups
cut across the org tree and are also held back wherever differencing
against a published org unit would isolate a small cell.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Iterator, Mapping, Optional, Sequence

from compliance_engine.access.scope import ScopeGrant, ScopeResolver
from compliance_engine.analytics.schemas import (
    ComplianceQueryRequest,
    ComplianceQueryResponse,
    ComplianceSummaryResponse,
    GroupResult,
    QueryMetadata,
    ScopeTotal,
    TopGroup,
    TrendPoint,
    WeekdayPoint,
)
from compliance_engine.auth.schemas import Principal
from compliance_engine.common.constants import (
    LEVEL_LABELS,
    WEEKDAY_NAMES,
    ComplianceTier,
    Dimension,
    Granularity,
    OrgLevel,
    QueryOutcome,
    RoleTier,
)
from compliance_engine.common.exceptions import (
    InvalidQuery,
    InvalidWindow,
    ScopeViolation,
    UnknownDimension,
)
from compliance_engine.compliance.calculator import (
    ComplianceMetric,
    EmployeeCompliance,
    benchmark_delta,
    round_ratio,
    rollup,
)
from compliance_engine.compliance.window import DateWindow
from compliance_engine.config import settings
from compliance_engine.hierarchy.index import OrgHierarchyIndex
from compliance_engine.privacy.anonymization import AnonymizedLabel, assign_labels, ranked
from compliance_engine.privacy.suppression import (
    FOREST,
    GroupMetric,
    PrivacySuppressionFilter,
    SuppressedMetric,
)
from compliance_engine.snapshot.snapshot import ComplianceSnapshot, WindowFacts
from compliance_engine.snapshot.store import SnapshotStore

logger = logging.getLogger(__name__)

# Group key for employees without a location on file
UNKNOWN_LOCATION = "UNKNOWN"


@dataclass(frozen=True)
class _Scope:
    """Resolved subtree for one query."""

    grant: ScopeGrant
    roots: tuple[str, ...]
    members: tuple[str, ...]
    units: tuple[str, ...]

    @property
    def key(self) -> str:
        return self.roots[0] if len(self.roots) == 1 else FOREST


@dataclass(frozen=True)
class _Decision:
    """Suppression-decided groups and scope total for one window."""

    groups: dict[str, GroupMetric]
    total: GroupMetric
    memberships: dict[str, frozenset[str]]


def _is_visible(metric: GroupMetric) -> bool:
    return not isinstance(metric, SuppressedMetric)


def _tree_units(index: OrgHierarchyIndex, roots: Sequence[str]) -> tuple[str, ...]:
    """Org units whose tree decisions a scope depends on.

    Top-down suppression decides a unit from the sibling sets on its path,
    so next to the scope's own subtrees this takes every root and every
    sibling of every ancestor.
    """
    def org(ids: Iterable[str]) -> Iterator[str]:
        return (n for n in ids if index.level_of(n) != OrgLevel.employee)

    units = set(org(index.roots))
    for root in roots:
        for nid in index.ancestors(root, include_self=True):
            parent = index.parent(nid)
            units.update(org(index.roots if parent is None else index.children(parent)))
        units.update(org(index.subtree(root)))
    return tuple(sorted(units))


def _scope_total(metric: GroupMetric) -> ScopeTotal:
    if not _is_visible(metric):
        return ScopeTotal(suppressed=True, tier=metric.tier)
    return ScopeTotal(
        ratio=round_ratio(metric.ratio),
        member_count=metric.member_count,
        tier=metric.tier,
    )


class AggregationQueryService:
    """Answers structured compliance queries against the published snapshot."""

    def __init__(
        self,
        store: SnapshotStore,
        *,
        threshold: Optional[int] = None,
        benchmark: Optional[float] = None,
        max_window_days: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.store = store
        self.suppression = PrivacySuppressionFilter(
            settings.SUPPRESSION_THRESHOLD if threshold is None else threshold
        )
        self.benchmark = settings.COMPLIANCE_BENCHMARK if benchmark is None else benchmark
        self.max_window_days = (
            settings.MAX_WINDOW_DAYS if max_window_days is None else max_window_days
        )
        self.timeout = timeout

    # ═════════════════════════════════════════════════════════════════
    # Validation
    # ═════════════════════════════════════════════════════════════════

    def _window(self, start: date, end: date) -> DateWindow:
        if end < start:
            raise InvalidWindow(f"Window end {end} precedes its start {start}.")
        window = DateWindow(start, end)
        if window.days > self.max_window_days:
            raise InvalidWindow(
                f"Window spans {window.days} days; the maximum is {self.max_window_days}."
            )
        return window

    def validate(
        self, request: ComplianceQueryRequest
    ) -> tuple[Dimension, DateWindow, Granularity]:
        try:
            dimension = Dimension(request.dimension.strip().lower())
        except ValueError:
            raise UnknownDimension(request.dimension) from None
        try:
            granularity = Granularity(request.granularity.strip().lower())
        except ValueError:
            raise InvalidWindow(
                f"Granularity '{request.granularity}' is not one of day, week, month."
            ) from None
        return dimension, self._window(request.start, request.end), granularity

    # ═════════════════════════════════════════════════════════════════
    # Scope
    # ═════════════════════════════════════════════════════════════════

    @staticmethod
    def _resolve_scope(
        snapshot: ComplianceSnapshot,
        principal: Principal,
        view_as: Optional[RoleTier],
        drill_down_node: Optional[str] = None,
    ) -> _Scope:
        resolver = ScopeResolver(snapshot.index)
        grant = resolver.resolve(principal, view_as)
        roots = resolver.authorize(grant, drill_down_node)
        if drill_down_node is not None and snapshot.index.level_of(drill_down_node) == OrgLevel.employee:
            logger.warning(
                "Scope violation: %s drilled into individual %s",
                principal.principal_id, drill_down_node,
            )
            raise ScopeViolation("Individual employees cannot be queried.")

        members: list[str] = []
        for root in roots:
            members.extend(snapshot.index.employees_under(root))
        return _Scope(
            grant=grant,
            roots=roots,
            members=tuple(sorted(set(members))),
            units=_tree_units(snapshot.index, roots),
        )

    @staticmethod
    def _groups(
        snapshot: ComplianceSnapshot,
        scope: _Scope,
        dimension: Dimension,
    ) -> dict[str, tuple[str, ...]]:
        """Group key → employee ids, for one dimension inside the scope."""
        if dimension == Dimension.location:
            by_location: dict[str, list[str]] = defaultdict(list)
            for eid in scope.members:
                loc = snapshot.facts[eid].employee.location or UNKNOWN_LOCATION
                by_location[loc].append(eid)
            return {loc: tuple(ids) for loc, ids in sorted(by_location.items())}

        level = OrgLevel(dimension.value)
        node_ids = sorted({
            nid
            for root in scope.roots
            for nid in snapshot.index.descendants_at_level(root, level)
        })
        if not node_ids:
            raise InvalidQuery(
                error_type="dimension-not-in-scope",
                title="Dimension Not In Scope",
                field="dimension",
                message=f"No {dimension.value} units lie inside the requested scope.",
            )
        return {nid: snapshot.index.employees_under(nid) for nid in node_ids}

    # ═════════════════════════════════════════════════════════════════
    # Suppression
    # ═════════════════════════════════════════════════════════════════

    def _decide(
        self,
        snapshot: ComplianceSnapshot,
        scope: _Scope,
        dimension: Dimension,
        groups: Mapping[str, Sequence[str]],
        facts: Mapping[str, WindowFacts],
        bucket: DateWindow,
    ) -> _Decision:
        per_employee: Optional[Mapping[str, EmployeeCompliance]] = snapshot.month_compliance(bucket)
        if per_employee is None:
            per_employee = {eid: f.compliance(bucket) for eid, f in facts.items()}
        raw_groups = {
            gid: rollup(gid, bucket, (per_employee[e] for e in emps))
            for gid, emps in groups.items()
        }
        raw_total = rollup(scope.key, bucket, (per_employee[e] for e in scope.members))
        memberships = {
            gid: frozenset(e for e in emps if not per_employee[e].excluded)
            for gid, emps in groups.items()
        }

        tree = snapshot.tree_decisions(bucket, scope.units, per_employee, self.suppression)
        if scope.key == FOREST:
            total_hidden = not self.suppression.is_sufficient(raw_total)
        else:
            total_hidden = not _is_visible(tree[scope.key])

        if total_hidden:
            hidden = set(raw_groups)
        elif dimension == Dimension.location:
            # Locations cut across the org tree; check them against every
            # unit the org dimensions publish for this bucket.
            published = {
                nid: frozenset(
                    e for e in snapshot.index.employees_under(nid)
                    if not per_employee[e].excluded
                )
                for nid, metric in tree.items() if _is_visible(metric)
            }
            hidden = self.suppression.overlap_conflicts(memberships, published)
        else:
            hidden = {gid for gid in raw_groups if not _is_visible(tree[gid])}

        if not total_hidden:
            covered = sum(m.member_count for m in raw_groups.values())
            hidden = self.suppression.complement(
                list(raw_groups.values()),
                hidden=hidden,
                uncovered_members=max(raw_total.member_count - covered, 0),
            )

        decided = {
            gid: self.suppression.hide(m) if gid in hidden else m
            for gid, m in raw_groups.items()
        }
        total = self.suppression.hide(raw_total) if total_hidden else raw_total
        return _Decision(groups=decided, total=total, memberships=memberships)

    def _trends(
        self,
        overall: _Decision,
        per_bucket: Sequence[_Decision],
        buckets: Sequence[DateWindow],
    ) -> dict[str, list[TrendPoint]]:
        """Trend points per group; buckets of one group are complemented together."""
        trends: dict[str, list[TrendPoint]] = {}
        for gid, metric in overall.groups.items():
            keys = [b.key() for b in buckets]
            if not _is_visible(metric):
                hidden = set(keys)
            else:
                already = {
                    k for k, d in zip(keys, per_bucket) if not _is_visible(d.groups[gid])
                }
                hidden = self.suppression.complement_overlapping(
                    {k: d.memberships[gid] for k, d in zip(keys, per_bucket)},
                    hidden=already,
                )
            points = []
            for key, bucket, decision in zip(keys, buckets, per_bucket):
                point = decision.groups[gid]
                if key in hidden or not _is_visible(point):
                    points.append(
                        TrendPoint(start=bucket.start, end=bucket.end, suppressed=True,
                                   tier=ComplianceTier.insufficient_data)
                    )
                else:
                    points.append(
                        TrendPoint(start=bucket.start, end=bucket.end,
                                   ratio=round_ratio(point.ratio), tier=point.tier)
                    )
            trends[gid] = points
        return trends

    # ═════════════════════════════════════════════════════════════════
    # Query
    # ═════════════════════════════════════════════════════════════════

    def execute(
        self,
        principal: Principal,
        request: ComplianceQueryRequest,
    ) -> ComplianceQueryResponse:
        """Run one structured query for *principal*."""
        dimension, window, granularity = self.validate(request)
        snapshot = self.store.acquire(self.timeout, request.snapshot_version)
        scope = self._resolve_scope(snapshot, principal, request.view_as, request.drill_down_node)
        groups = self._groups(snapshot, scope, dimension)

        facts = snapshot.window_facts(window)
        overall = self._decide(snapshot, scope, dimension, groups, facts, window)
        buckets = window.buckets(granularity)
        per_bucket = [
            self._decide(snapshot, scope, dimension, groups, facts, b) for b in buckets
        ]
        trends = self._trends(overall, per_bucket, buckets)

        labels = self._labels(snapshot, scope, dimension, window, overall)
        results = [
            self._group_result(label, overall.groups[label.node_id], trends[label.node_id])
            for label in ranked(labels)
        ]

        visible = [r for r in results if not r.suppressed]
        outcome = QueryOutcome.success if visible else QueryOutcome.suppressed_all
        approximate = any(facts[e].approximate for e in scope.members)
        logger.info(
            "Query %s by %s (%s): %d groups, %d suppressed, outcome=%s",
            dimension.value, principal.principal_id, scope.grant.role_tier.value,
            len(results), len(results) - len(visible), outcome.value,
        )
        return ComplianceQueryResponse(
            outcome=outcome,
            dimension=dimension.value,
            granularity=granularity.value,
            window_start=window.start,
            window_end=window.end,
            groups=results,
            total=_scope_total(overall.total),
            metadata=QueryMetadata(
                outcome=outcome,
                snapshot_version=snapshot.version,
                role_tier=scope.grant.role_tier,
                suppression_threshold=self.suppression.threshold,
                suppressed_labels=[r.label for r in results if r.suppressed],
                approximate_calendar=approximate,
            ),
        )

    @staticmethod
    def _labels(
        snapshot: ComplianceSnapshot,
        scope: _Scope,
        dimension: Dimension,
        window: DateWindow,
        overall: _Decision,
    ) -> dict[str, AnonymizedLabel]:
        """Rank labels for the groups; the recompute's own labels when they match.

        A whole-month query whose groups are exactly the children of the
        scope root, with the same visibility the recompute decided, ranks
        identically, so its stored labels are served as they are.
        """
        cached = snapshot.cached_labels(scope.key, window)
        if (
            cached is not None
            and dimension != Dimension.location
            and set(cached) == set(overall.groups)
            and all(
                _is_visible(overall.groups[gid])
                == _is_visible(snapshot.node_metrics[(gid, window.key())])
                for gid in cached
            )
        ):
            return dict(cached)
        return assign_labels(
            scope.key, window, list(overall.groups.values()), LEVEL_LABELS[dimension.value]
        )

    def _group_result(
        self,
        label: AnonymizedLabel,
        metric: GroupMetric,
        trend: list[TrendPoint],
    ) -> GroupResult:
        if not _is_visible(metric):
            return GroupResult(label=label.label, suppressed=True, tier=metric.tier, trend=trend)
        return GroupResult(
            label=label.label,
            node_id=label.node_id,
            ratio=round_ratio(metric.ratio),
            member_count=metric.member_count,
            tier=metric.tier,
            benchmark_delta=benchmark_delta(metric.ratio, self.benchmark),
            trend=trend,
        )

    # ═════════════════════════════════════════════════════════════════
    # Summary (dashboard KPI cards)
    # ═════════════════════════════════════════════════════════════════

    def summary(
        self,
        principal: Principal,
        start: date,
        end: date,
        view_as: Optional[RoleTier] = None,
    ) -> ComplianceSummaryResponse:
        """Scope compliance, change vs the previous window, top location, weekday profile."""
        window = self._window(start, end)
        snapshot = self.store.acquire(self.timeout)
        scope = self._resolve_scope(snapshot, principal, view_as)
        locations = self._groups(snapshot, scope, Dimension.location)

        facts = snapshot.window_facts(window)
        current = self._decide(snapshot, scope, Dimension.location, locations, facts, window)
        previous_window = window.previous()
        previous = self._decide(
            snapshot, scope, Dimension.location, locations,
            snapshot.window_facts(previous_window), previous_window,
        )

        change = None
        if _is_visible(current.total) and _is_visible(previous.total):
            if current.total.ratio is not None and previous.total.ratio is not None:
                change = round_ratio(current.total.ratio - previous.total.ratio)

        labels = assign_labels(
            scope.key, window, list(current.groups.values()), LEVEL_LABELS["location"]
        )
        top = None
        best = [
            labels[gid] for gid, m in current.groups.items()
            if _is_visible(m) and m.ratio is not None
        ]
        if best:
            first = min(best, key=lambda a: a.rank)
            top = TopGroup(
                label=first.label,
                node_id=first.node_id,
                ratio=round_ratio(current.groups[first.node_id].ratio),
            )

        outcome = (
            QueryOutcome.success if _is_visible(current.total) else QueryOutcome.suppressed_all
        )
        return ComplianceSummaryResponse(
            outcome=outcome,
            window_start=window.start,
            window_end=window.end,
            current=_scope_total(current.total),
            previous=_scope_total(previous.total),
            change=change,
            benchmark=self.benchmark,
            benchmark_delta=(
                benchmark_delta(current.total.ratio, self.benchmark)
                if _is_visible(current.total) else None
            ),
            top_location=top,
            weekday_profile=self._weekday_profile(scope, facts, window, current.total),
            metadata=QueryMetadata(
                outcome=outcome,
                snapshot_version=snapshot.version,
                role_tier=scope.grant.role_tier,
                suppression_threshold=self.suppression.threshold,
                suppressed_labels=sorted(
                    labels[gid].label for gid, m in current.groups.items() if not _is_visible(m)
                ),
                approximate_calendar=any(facts[e].approximate for e in scope.members),
            ),
        )

    def _weekday_profile(
        self,
        scope: _Scope,
        facts: Mapping[str, WindowFacts],
        window: DateWindow,
        total: GroupMetric,
    ) -> list[WeekdayPoint]:
        """Ratio per weekday; weekdays nobody is eligible on are left out."""
        raw: dict[str, ComplianceMetric] = {}
        members: dict[str, frozenset[str]] = {}
        for isoweekday, name in enumerate(WEEKDAY_NAMES, start=1):
            rows = [facts[e].on_weekday(isoweekday, window) for e in scope.members]
            metric = rollup(name, window, rows)
            if metric.denominator == 0:
                continue
            raw[name] = metric
            members[name] = frozenset(r.employee_id for r in rows if not r.excluded)

        if _is_visible(total):
            hidden = self.suppression.complement_overlapping(members)
        else:
            hidden = set(raw)

        profile = []
        for name, metric in raw.items():
            if name in hidden:
                profile.append(WeekdayPoint(weekday=name, suppressed=True,
                                            tier=ComplianceTier.insufficient_data))
            else:
                profile.append(WeekdayPoint(weekday=name, ratio=round_ratio(metric.ratio),
                                            tier=metric.tier))
        return profile

