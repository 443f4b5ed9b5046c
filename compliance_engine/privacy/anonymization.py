"""Anonymization layer — rank-derived sibling labels per (parent, window).

Visible siblings are ranked by exact ratio, highest first; equal ratios fall
back to node id ascending. Suppressed siblings follow in node-id order so
they keep a positional label without revealing where their ratio would
rank. Labels therefore depend only on the parent, the window, the ratios
and the tie-break rule.
"""

from __future__ import annotations

from dataclasses import dataclass
from fractions import Fraction
from typing import Sequence

from compliance_engine.compliance.window import DateWindow
from compliance_engine.privacy.suppression import GroupMetric, SuppressedMetric


@dataclass(frozen=True)
class AnonymizedLabel:
    parent_id: str
    window_key: str
    node_id: str
    rank: int
    label: str


def letters(rank: int) -> str:
    """0 → A, 25 → Z, 26 → AA, 27 → AB, ..."""
    if rank < 0:
        raise ValueError("rank must be non-negative")
    out = ""
    n = rank + 1
    while n:
        n, rem = divmod(n - 1, 26)
        out = chr(ord("A") + rem) + out
    return out


def _rank_key(metric: GroupMetric) -> tuple:
    if isinstance(metric, SuppressedMetric) or metric.denominator == 0:
        return (1, Fraction(0), metric.scope_id)
    return (0, -Fraction(metric.numerator, metric.denominator), metric.scope_id)


def assign_labels(
    parent_id: str,
    window: DateWindow,
    siblings: Sequence[GroupMetric],
    prefix: str,
) -> dict[str, AnonymizedLabel]:
    """Label every sibling; result is keyed by real node id."""
    ordered = sorted(siblings, key=_rank_key)
    return {
        m.scope_id: AnonymizedLabel(
            parent_id=parent_id,
            window_key=window.key(),
            node_id=m.scope_id,
            rank=i,
            label=f"{prefix} {letters(i)}",
        )
        for i, m in enumerate(ordered)
    }


def ranked(labels: dict[str, AnonymizedLabel]) -> list[AnonymizedLabel]:
    return sorted(labels.values(), key=lambda a: a.rank)

