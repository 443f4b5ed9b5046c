"""Immutable compliance snapshot — everything one recompute cycle produced.

A snapshot is never mutated after construction; queries read it from any
number of threads. The one thing that grows afterwards is a bounded memo
of tree-wide suppression decisions, derived data behind its own lock.
"""

from __future__ import annotations

import hashlib
import json
import threading
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, datetime
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional

from compliance_engine.common.constants import OrgLevel
from compliance_engine.compliance.calculator import (
    ComplianceMetric,
    EmployeeCompliance,
    rollup,
)
from compliance_engine.compliance.calendar import CalendarResolver
from compliance_engine.compliance.eligibility import EligibilityCalculator
from compliance_engine.compliance.records import Employee
from compliance_engine.compliance.window import DateWindow
from compliance_engine.hierarchy.index import OrgHierarchyIndex
from compliance_engine.ingestion.schemas import IngestionSummary
from compliance_engine.privacy.anonymization import AnonymizedLabel
from compliance_engine.privacy.suppression import GroupMetric, PrivacySuppressionFilter

# Tree decisions kept per snapshot for non-month buckets
DECISION_MEMO_SIZE = 512


@dataclass(frozen=True)
class EmployeeFacts:
    """Normalized per-employee inputs.

    ``eligible`` holds the employee's eligible dates over ``span`` (the
    whole months of data coverage), computed once at recompute time.
    """

    employee: Employee
    country: Optional[str]
    present: frozenset[date]
    leave: frozenset[date]
    eligible: frozenset[date] = frozenset()
    span: Optional[DateWindow] = None
    approximate: bool = False

    def covers(self, window: DateWindow) -> bool:
        return (
            self.span is not None
            and self.span.start <= window.start
            and window.end <= self.span.end
        )


@dataclass(frozen=True)
class WindowFacts:
    """One employee's eligible and present dates inside a query window."""

    employee_id: str
    eligible: frozenset[date]
    present: frozenset[date]
    approximate: bool = False

    def compliance(self, bucket: DateWindow) -> EmployeeCompliance:
        # Walk the bucket, not the sets: buckets are usually much shorter.
        return EmployeeCompliance(
            employee_id=self.employee_id,
            window=bucket,
            present_days=sum(1 for d in bucket if d in self.present),
            eligible_days=sum(1 for d in bucket if d in self.eligible),
            approximate=self.approximate,
        )

    def on_weekday(self, isoweekday: int, window: DateWindow) -> EmployeeCompliance:
        return EmployeeCompliance(
            employee_id=self.employee_id,
            window=window,
            present_days=sum(1 for d in self.present if d.isoweekday() == isoweekday),
            eligible_days=sum(1 for d in self.eligible if d.isoweekday() == isoweekday),
            approximate=self.approximate,
        )


def rollup_nodes(
    index: OrgHierarchyIndex,
    node_ids: Iterable[str],
    per_employee: Mapping[str, EmployeeCompliance],
    window: DateWindow,
) -> dict[str, ComplianceMetric]:
    """Raw rollup for each node over the employees beneath it."""
    return {
        nid: rollup(
            nid,
            window,
            (per_employee[e] for e in index.employees_under(nid) if e in per_employee),
        )
        for nid in node_ids
    }


class ComplianceSnapshot:
    """Read-only result of one recompute, versioned by its UTC timestamp."""

    def __init__(
        self,
        *,
        version: datetime,
        index: OrgHierarchyIndex,
        facts: Mapping[str, EmployeeFacts],
        calendar: CalendarResolver,
        coverage: Optional[DateWindow],
        leaf_metrics: Mapping[tuple[str, str], EmployeeCompliance],
        node_metrics: Mapping[tuple[str, str], GroupMetric],
        labels: Mapping[tuple[str, str], Mapping[str, AnonymizedLabel]],
        summary: IngestionSummary,
        threshold: int,
    ) -> None:
        self.version = version
        self.index = index
        self.facts = MappingProxyType(dict(facts))
        self.calendar = calendar
        self.eligibility = EligibilityCalculator(calendar)
        self.coverage = coverage
        self.leaf_metrics = MappingProxyType(dict(leaf_metrics))
        self.node_metrics = MappingProxyType(dict(node_metrics))
        self.labels = MappingProxyType(
            {k: MappingProxyType(dict(v)) for k, v in labels.items()}
        )
        self.summary = summary
        self.threshold = threshold
        self.months = frozenset(key for _, key in self.node_metrics)
        self.digest = hashlib.sha256(self.canonical_metrics()).hexdigest()
        self._memo: "OrderedDict[tuple, dict[str, GroupMetric]]" = OrderedDict()
        self._memo_lock = threading.Lock()

    def __repr__(self) -> str:
        return f"<ComplianceSnapshot {self.version.isoformat()} {self.digest[:12]}>"

    # ── Query-time facts ────────────────────────────────────────────

    def window_facts(self, window: DateWindow) -> dict[str, WindowFacts]:
        """Eligible and present dates per employee inside *window*.

        Windows inside the precomputed span read the cached eligible dates;
        anything reaching outside it goes back to the calendar.
        """
        out: dict[str, WindowFacts] = {}
        for eid, f in self.facts.items():
            if f.covers(window):
                eligible = frozenset(d for d in window if d in f.eligible)
                approximate = f.approximate and f.employee.active_window(window) is not None
            else:
                found = self.eligibility.eligible_dates(f.employee, window, f.leave, f.country)
                eligible, approximate = found.dates, found.approximate
            out[eid] = WindowFacts(
                employee_id=eid,
                eligible=eligible,
                present=frozenset(d for d in f.present if d in eligible),
                approximate=approximate,
            )
        return out

    def month_compliance(self, window: DateWindow) -> Optional[dict[str, EmployeeCompliance]]:
        """Recompute-time counts per employee when *window* is a whole computed month."""
        key = window.key()
        if key not in self.months:
            return None
        out: dict[str, EmployeeCompliance] = {}
        for eid in self.facts:
            metric = self.leaf_metrics.get((eid, key))
            if metric is None:
                return None
            out[eid] = metric
        return out

    def tree_decisions(
        self,
        window: DateWindow,
        units: tuple[str, ...],
        per_employee: Mapping[str, EmployeeCompliance],
        suppression: PrivacySuppressionFilter,
    ) -> dict[str, GroupMetric]:
        """Tree-wide suppression of *units* for one window.

        *units* must be closed under the sibling sets above them (every
        root, and every sibling of every ancestor) so that the decisions
        equal those of the whole forest. Whole computed months come from
        the recompute; other windows are memoized.
        """
        key = window.key()
        if key in self.months and suppression.threshold == self.threshold:
            return {nid: self.node_metrics[(nid, key)] for nid in units}

        memo_key = (key, suppression.threshold, units)
        with self._memo_lock:
            cached = self._memo.get(memo_key)
            if cached is not None:
                self._memo.move_to_end(memo_key)
                return cached

        decided = suppression.apply_tree(
            self.index, rollup_nodes(self.index, units, per_employee, window)
        )
        with self._memo_lock:
            self._memo[memo_key] = decided
            while len(self._memo) > DECISION_MEMO_SIZE:
                self._memo.popitem(last=False)
        return decided

    def cached_labels(self, parent_id: str, window: DateWindow) -> Optional[Mapping[str, AnonymizedLabel]]:
        return self.labels.get((parent_id, window.key()))

    def org_units(self) -> list[str]:
        return [
            nid for nid, _, level in self.index.shape()
            if level != OrgLevel.employee.value
        ]

    # ── Serialization ───────────────────────────────────────────────

    def payload(self) -> dict[str, Any]:
        """JSON-ready content (version excluded so equal inputs serialize equally)."""
        return {
            "leaf_metrics": [
                {
                    "employee_id": m.employee_id,
                    "window": m.window.key(),
                    "present_days": m.present_days,
                    "eligible_days": m.eligible_days,
                    "approximate": m.approximate,
                }
                for _, m in sorted(self.leaf_metrics.items())
            ],
            "node_metrics": [m.to_canonical() for _, m in sorted(self.node_metrics.items())],
            "labels": [
                {
                    "parent_id": parent,
                    "window": window_key,
                    "assignments": {nid: lab.label for nid, lab in sorted(assigned.items())},
                }
                for (parent, window_key), assigned in sorted(self.labels.items())
            ],
        }

    def canonical_metrics(self) -> bytes:
        return json.dumps(self.payload(), sort_keys=True, separators=(",", ":")).encode()
