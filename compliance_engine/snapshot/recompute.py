"""Recompute job — build a snapshot from immutable inputs.

Steps:
  1. Build and validate the org hierarchy (fatal on integrity errors).
  2. Normalize presence and leave per employee.
  3. Per top-level subtree, in parallel: each employee's eligible dates
     over the covered months (kept on the snapshot for queries), monthly
     per-employee counts and raw org-unit rollups.
  4. Serially: tree-wide suppression and label assignment per month.

The job has no side effects; publishing is the store's job.
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timezone
from typing import Optional

from compliance_engine.common.constants import LEVEL_LABELS, OrgLevel
from compliance_engine.compliance.calculator import ComplianceMetric, EmployeeCompliance
from compliance_engine.compliance.calendar import CalendarResolver
from compliance_engine.compliance.eligibility import EligibilityCalculator, EligibleDays
from compliance_engine.compliance.presence import normalize_presence
from compliance_engine.compliance.window import DateWindow, month_windows
from compliance_engine.hierarchy.index import OrgHierarchyIndex
from compliance_engine.ingestion.service import SnapshotInputs
from compliance_engine.privacy.anonymization import AnonymizedLabel, assign_labels
from compliance_engine.privacy.suppression import FOREST, GroupMetric, PrivacySuppressionFilter
from compliance_engine.snapshot.snapshot import (
    ComplianceSnapshot,
    EmployeeFacts,
    WindowFacts,
    rollup_nodes,
)

logger = logging.getLogger(__name__)


def sibling_prefix(index: OrgHierarchyIndex, child_ids: list[str]) -> str:
    """Label prefix for a sibling set; mixed levels share a neutral prefix."""
    levels = {index.level_of(c).value for c in child_ids}
    if len(levels) == 1:
        return LEVEL_LABELS.get(levels.pop(), "Unit")
    return "Unit"


def label_tree(
    index: OrgHierarchyIndex,
    decided: dict[str, GroupMetric],
    window: DateWindow,
) -> dict[tuple[str, str], dict[str, AnonymizedLabel]]:
    """Labels for every sibling set of org units under each parent."""
    out: dict[tuple[str, str], dict[str, AnonymizedLabel]] = {}
    parents: list[tuple[str, list[str]]] = [(FOREST, list(index.roots))]
    parents.extend(
        (nid, [c for c in index.children(nid) if index.level_of(c) != OrgLevel.employee])
        for nid in decided
    )
    for parent_id, child_ids in parents:
        child_ids = [c for c in child_ids if c in decided]
        if not child_ids:
            continue
        out[(parent_id, window.key())] = assign_labels(
            parent_id,
            window,
            [decided[c] for c in child_ids],
            sibling_prefix(index, child_ids),
        )
    return out


class RecomputeJob:
    """One recompute cycle over a fixed set of inputs."""

    def __init__(
        self,
        *,
        threshold: int,
        default_calendar: str = "US",
        workers: int = 4,
    ) -> None:
        self.suppression = PrivacySuppressionFilter(threshold)
        self.default_calendar = default_calendar
        self.workers = max(1, workers)

    def run(
        self,
        inputs: SnapshotInputs,
        version: Optional[datetime] = None,
    ) -> ComplianceSnapshot:
        version = version or datetime.now(timezone.utc)
        logger.info(
            "Recompute %s: %d org units, %d employees, %d presence, %d leave, %d holidays",
            version.isoformat(),
            len(inputs.org_units),
            len(inputs.employees),
            len(inputs.presence),
            len(inputs.leave),
            len(inputs.holidays),
        )

        index = OrgHierarchyIndex.from_roster(inputs.org_units, inputs.employees)

        holidays: dict[str, set[date]] = defaultdict(set)
        for h in inputs.holidays:
            holidays[h.scope].add(h.date)
        calendar = CalendarResolver(holidays, self.default_calendar)
        eligibility = EligibilityCalculator(calendar)

        presence_by_emp: dict[str, list] = defaultdict(list)
        for p in inputs.presence:
            presence_by_emp[p.employee_id].append(p)
        leave_by_emp: dict[str, set[date]] = defaultdict(set)
        for lv in inputs.leave:
            leave_by_emp[lv.employee_id].add(lv.date)

        roster = {e.employee_id: e for e in inputs.employees}
        present = {
            eid: normalize_presence(presence_by_emp.get(eid, ())) for eid in roster
        }
        leave = {eid: frozenset(leave_by_emp.get(eid, ())) for eid in roster}

        coverage = self._coverage([*present.values(), *leave.values()])
        months = month_windows(coverage.start, coverage.end) if coverage else []
        span = DateWindow(months[0].start, months[-1].end) if months else None

        def _compute_root(root: str):
            facts: dict[str, EmployeeFacts] = {}
            leaves: dict[tuple[str, str], EmployeeCompliance] = {}
            nodes: dict[tuple[str, str], ComplianceMetric] = {}
            for eid in index.employees_under(root):
                country = index.country_code(eid)
                found = (
                    eligibility.eligible_dates(roster[eid], span, leave[eid], country)
                    if span else EligibleDays(frozenset())
                )
                facts[eid] = EmployeeFacts(
                    employee=roster[eid],
                    country=country,
                    present=present[eid],
                    leave=leave[eid],
                    eligible=found.dates,
                    span=span,
                    approximate=found.approximate,
                )
            units = [
                n for n in index.subtree(root) if index.level_of(n) != OrgLevel.employee
            ]
            for month in months:
                per_emp = {
                    eid: WindowFacts(
                        employee_id=eid,
                        eligible=f.eligible,
                        present=frozenset(d for d in f.present if d in f.eligible),
                        approximate=f.approximate and f.employee.active_window(month) is not None,
                    ).compliance(month)
                    for eid, f in facts.items()
                }
                for eid, m in per_emp.items():
                    leaves[(eid, month.key())] = m
                for nid, metric in rollup_nodes(index, units, per_emp, month).items():
                    nodes[(nid, month.key())] = metric
            return facts, leaves, nodes

        facts: dict[str, EmployeeFacts] = {}
        leaf_metrics: dict[tuple[str, str], EmployeeCompliance] = {}
        raw_nodes: dict[tuple[str, str], ComplianceMetric] = {}
        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            for root_facts, leaves, nodes in pool.map(_compute_root, index.roots):
                facts.update(root_facts)
                leaf_metrics.update(leaves)
                raw_nodes.update(nodes)

        node_metrics: dict[tuple[str, str], GroupMetric] = {}
        labels: dict[tuple[str, str], dict[str, AnonymizedLabel]] = {}
        for month in months:
            month_raw = {
                nid: m for (nid, key), m in raw_nodes.items() if key == month.key()
            }
            decided = self.suppression.apply_tree(index, month_raw)
            for nid, m in decided.items():
                node_metrics[(nid, month.key())] = m
            labels.update(label_tree(index, decided, month))

        snapshot = ComplianceSnapshot(
            version=version,
            index=index,
            facts=facts,
            calendar=calendar,
            coverage=coverage,
            leaf_metrics=leaf_metrics,
            node_metrics=node_metrics,
            labels=labels,
            summary=inputs.summary,
            threshold=self.suppression.threshold,
        )
        suppressed = Counter(m.suppressed for m in node_metrics.values())
        logger.info(
            "Recompute %s done: %d months, %d unit-month metrics (%d suppressed), digest %s",
            version.isoformat(),
            len(months),
            len(node_metrics),
            suppressed[True],
            snapshot.digest[:12],
        )
        return snapshot

    @staticmethod
    def _coverage(date_sets: list[frozenset[date]]) -> Optional[DateWindow]:
        dates = [d for ds in date_sets for d in ds]
        if not dates:
            return None
        return DateWindow(min(dates), max(dates))
