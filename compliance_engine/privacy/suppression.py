"""Privacy suppression filter — minimum group size with complementary suppression.

Primary suppression replaces any group with fewer than ``threshold``
contributing members by a ``SuppressedMetric``, which has no numerator,
denominator or ratio fields at all.

Primary suppression alone leaks through subtraction: with a visible parent
total and every sibling but one visible, the hidden sibling is the
difference. Complementary suppression therefore keeps hiding the smallest
visible sibling (ties by id) until the hidden members of a sibling set,
together with any members the set does not cover, number at least
``threshold`` or nothing is left to hide.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import AbstractSet, Any, Iterable, Mapping, Optional, Sequence, Union

from compliance_engine.common.constants import (
    DEFAULT_SUPPRESSION_THRESHOLD,
    ComplianceTier,
    OrgLevel,
)
from compliance_engine.compliance.calculator import ComplianceMetric
from compliance_engine.compliance.window import DateWindow
from compliance_engine.hierarchy.index import OrgHierarchyIndex

logger = logging.getLogger(__name__)

# Parent key used for the set of forest roots
FOREST = "*"


@dataclass(frozen=True)
class SuppressedMetric:
    """Caller-visible stand-in for a group below the minimum size."""

    scope_id: str
    window: DateWindow
    approximate: bool = False
    suppressed: bool = True
    insufficient: bool = True

    @property
    def ratio(self) -> None:
        return None

    @property
    def tier(self) -> ComplianceTier:
        return ComplianceTier.insufficient_data

    def to_canonical(self) -> dict[str, Any]:
        return {
            "scope_id": self.scope_id,
            "window": self.window.key(),
            "suppressed": True,
        }


GroupMetric = Union[ComplianceMetric, SuppressedMetric]


class PrivacySuppressionFilter:
    """Applies the minimum-group-size policy to raw rollups."""

    def __init__(self, threshold: int = DEFAULT_SUPPRESSION_THRESHOLD) -> None:
        if threshold < 1:
            raise ValueError("suppression threshold must be at least 1")
        self.threshold = threshold

    # ── Primary ─────────────────────────────────────────────────────

    def is_sufficient(self, metric: ComplianceMetric) -> bool:
        return metric.member_count >= self.threshold

    @staticmethod
    def hide(metric: ComplianceMetric) -> SuppressedMetric:
        return SuppressedMetric(
            scope_id=metric.scope_id,
            window=metric.window,
            approximate=metric.approximate,
        )

    def apply(self, metric: ComplianceMetric) -> GroupMetric:
        return metric if self.is_sufficient(metric) else self.hide(metric)

    # ── Complementary ───────────────────────────────────────────────

    def complement(
        self,
        metrics: Sequence[ComplianceMetric],
        hidden: Iterable[str] = (),
        uncovered_members: int = 0,
    ) -> set[str]:
        """Ids to hide in one sibling set published next to its parent total.

        *hidden* are ids already hidden by an earlier decision;
        *uncovered_members* are parent members that belong to no sibling
        (never published separately, so they count as hidden).
        """
        by_id = {m.scope_id: m for m in metrics}
        suppressed = {m.scope_id for m in metrics if not self.is_sufficient(m)}
        suppressed |= {h for h in hidden if h in by_id}

        def hidden_members() -> int:
            return uncovered_members + sum(by_id[s].member_count for s in suppressed)

        while 0 < hidden_members() < self.threshold:
            candidates = sorted(
                (m for m in metrics if m.scope_id not in suppressed),
                key=lambda m: (m.member_count, m.scope_id),
            )
            if not candidates:
                break
            suppressed.add(candidates[0].scope_id)
        return suppressed

    def complement_overlapping(
        self,
        members: Mapping[str, AbstractSet[str]],
        hidden: Iterable[str] = (),
    ) -> set[str]:
        """Same policy for entries whose member sets may overlap.

        Trend buckets and weekday slices of one group share employees, so
        hidden members are counted as the distinct union, not a sum.
        """
        suppressed = {k for k, m in members.items() if len(m) < self.threshold}
        suppressed |= {h for h in hidden if h in members}

        def hidden_members() -> int:
            seen: set[str] = set()
            for k in suppressed:
                seen |= members[k]
            return len(seen)

        while 0 < hidden_members() < self.threshold:
            candidates = sorted(
                (k for k in members if k not in suppressed),
                key=lambda k: (len(members[k]), k),
            )
            if not candidates:
                break
            suppressed.add(candidates[0])
        return suppressed

    def overlap_conflicts(
        self,
        groups: Mapping[str, AbstractSet[str]],
        units: Mapping[str, AbstractSet[str]],
    ) -> set[str]:
        """Groups of a second partition that a published unit would expose.

        A group G published next to an org unit U lets a reader difference
        out U∩G, U−G and G−U (together with the other published totals),
        so each of those cells must be empty or reach the threshold. Any
        group failing that against some visible unit is hidden; the caller
        still complements the rest of its own sibling set.
        """
        conflicts: set[str] = set()
        for gid, members in groups.items():
            for unit_members in units.values():
                cells = (
                    len(members & unit_members),
                    len(unit_members - members),
                    len(members - unit_members),
                )
                if any(0 < c < self.threshold for c in cells):
                    conflicts.add(gid)
                    break
        if conflicts:
            logger.debug("Hid %d groups overlapping published units", len(conflicts))
        return conflicts

    def apply_tree(
        self,
        index: OrgHierarchyIndex,
        node_metrics: Mapping[str, ComplianceMetric],
    ) -> dict[str, GroupMetric]:
        """Decide every org unit in the forest for one window.

        Each parent's org-unit children form a sibling set; its direct
        employee members are the uncovered remainder. Roots are siblings
        under the whole-forest total.
        """
        decided: set[str] = set()
        parents: list[Optional[str]] = [None]
        parents.extend(
            nid for nid in node_metrics if index.level_of(nid) != OrgLevel.employee
        )

        # Top-down: a parent hidden earlier never un-hides its children.
        for parent_id in sorted(parents, key=lambda p: (p is not None, _depth(index, p), p or "")):
            if parent_id is None:
                child_ids = [r for r in index.roots if r in node_metrics]
                parent_members = sum(node_metrics[c].member_count for c in child_ids)
            else:
                child_ids = [
                    c for c in index.children(parent_id)
                    if c in node_metrics and index.level_of(c) != OrgLevel.employee
                ]
                parent_members = node_metrics[parent_id].member_count
            if not child_ids:
                continue

            siblings = [node_metrics[c] for c in child_ids]
            covered = sum(m.member_count for m in siblings)
            hidden = set(child_ids) if parent_id in decided else set()
            decided |= self.complement(
                siblings,
                hidden=hidden,
                uncovered_members=max(parent_members - covered, 0),
            )

        for nid, metric in node_metrics.items():
            if nid not in decided and not self.is_sufficient(metric):
                decided.add(nid)

        if decided:
            logger.debug("Suppressed %d of %d org units", len(decided), len(node_metrics))
        return {
            nid: self.hide(m) if nid in decided else m
            for nid, m in node_metrics.items()
        }


def _depth(index: OrgHierarchyIndex, node_id: Optional[str]) -> int:
    return -1 if node_id is None else len(index.ancestors(node_id))
