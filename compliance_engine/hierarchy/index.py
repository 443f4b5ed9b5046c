"""Org hierarchy index — arena of indexed nodes built from a parent-pointer list.

The flat list delivered by ingestion may contain operator errors, so the
build pass validates it before anything is served:

  * duplicate ids whose records differ      → DataIntegrityError
  * parent id that does not exist           → DataIntegrityError
  * employee node with children             → DataIntegrityError
  * any cycle (visited-set walk on indices) → DataIntegrityError

Nodes are sorted by id before indexing, so input order never changes the
resulting shape and rebuilding from the same records is idempotent.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator, Optional

from compliance_engine.common.constants import OrgLevel
from compliance_engine.common.exceptions import DataIntegrityError
from compliance_engine.compliance.records import Employee

_ROOT = -1


@dataclass(frozen=True)
class OrgNodeRecord:
    """One row of the flat org list."""

    node_id: str
    parent_id: Optional[str]
    level: OrgLevel
    name: Optional[str] = None
    code: Optional[str] = None


@dataclass(frozen=True)
class OrgNode:
    node_id: str
    parent_id: Optional[str]
    level: OrgLevel
    name: Optional[str]
    code: Optional[str]
    children: tuple[str, ...]


class OrgHierarchyIndex:
    """Read-only forest over org units and employees."""

    def __init__(self, records: Iterable[OrgNodeRecord]) -> None:
        unique: dict[str, OrgNodeRecord] = {}
        for rec in records:
            seen = unique.get(rec.node_id)
            if seen is not None and seen != rec:
                raise DataIntegrityError(
                    f"Org node '{rec.node_id}' appears more than once with different "
                    f"parents or attributes.",
                    errors={"node_id": [rec.node_id]},
                )
            unique[rec.node_id] = rec

        ordered = sorted(unique.values(), key=lambda r: r.node_id)
        self._ids: list[str] = [r.node_id for r in ordered]
        self._pos: dict[str, int] = {nid: i for i, nid in enumerate(self._ids)}
        self._records: list[OrgNodeRecord] = ordered

        self._parent: list[int] = []
        for rec in ordered:
            if rec.parent_id is None:
                self._parent.append(_ROOT)
                continue
            if rec.parent_id not in self._pos:
                raise DataIntegrityError(
                    f"Org node '{rec.node_id}' references unknown parent '{rec.parent_id}'.",
                    errors={"parent_id": [rec.parent_id]},
                )
            self._parent.append(self._pos[rec.parent_id])

        children: list[list[int]] = [[] for _ in ordered]
        for i, p in enumerate(self._parent):
            if p != _ROOT:
                if ordered[p].level == OrgLevel.employee:
                    raise DataIntegrityError(
                        f"Employee node '{ordered[p].node_id}' cannot have children.",
                        errors={"node_id": [ordered[i].node_id]},
                    )
                children[p].append(i)
        self._children: list[tuple[int, ...]] = [tuple(c) for c in children]

        self._check_acyclic()

        self._roots: tuple[int, ...] = tuple(
            i for i, p in enumerate(self._parent) if p == _ROOT
        )
        self._employees_under: list[tuple[int, ...]] = self._index_employees()

    # ── Construction helpers ────────────────────────────────────────

    @classmethod
    def from_roster(
        cls,
        org_units: Iterable[OrgNodeRecord],
        employees: Iterable[Employee],
    ) -> "OrgHierarchyIndex":
        """Org units plus employees as leaf nodes under their manager's node."""
        records = list(org_units)
        records.extend(
            OrgNodeRecord(
                node_id=e.employee_id,
                parent_id=e.manager_id,
                level=OrgLevel.employee,
            )
            for e in employees
        )
        return cls(records)

    def _check_acyclic(self) -> None:
        # 0 = unvisited, 1 = on the current walk, 2 = known to reach a root
        state = [0] * len(self._ids)
        for start in range(len(self._ids)):
            path: list[int] = []
            j = start
            while j != _ROOT and state[j] == 0:
                state[j] = 1
                path.append(j)
                j = self._parent[j]
            if j != _ROOT and state[j] == 1:
                cycle = path[path.index(j):]
                raise DataIntegrityError(
                    "Org hierarchy contains a cycle: "
                    + " → ".join(self._ids[k] for k in cycle),
                    errors={"cycle": [self._ids[k] for k in cycle]},
                )
            for k in path:
                state[k] = 2

    def _index_employees(self) -> list[tuple[int, ...]]:
        under: list[list[int]] = [[] for _ in self._ids]
        for i, rec in enumerate(self._records):
            if rec.level != OrgLevel.employee:
                continue
            j = i
            while j != _ROOT:
                under[j].append(i)
                j = self._parent[j]
        return [tuple(u) for u in under]

    # ── Lookups ─────────────────────────────────────────────────────

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._pos

    def _idx(self, node_id: str) -> int:
        try:
            return self._pos[node_id]
        except KeyError:
            raise KeyError(f"unknown org node '{node_id}'") from None

    def node(self, node_id: str) -> OrgNode:
        i = self._idx(node_id)
        rec = self._records[i]
        return OrgNode(
            node_id=rec.node_id,
            parent_id=rec.parent_id,
            level=rec.level,
            name=rec.name,
            code=rec.code,
            children=self.children(node_id),
        )

    def level_of(self, node_id: str) -> OrgLevel:
        return self._records[self._idx(node_id)].level

    def parent(self, node_id: str) -> Optional[str]:
        p = self._parent[self._idx(node_id)]
        return None if p == _ROOT else self._ids[p]

    @property
    def roots(self) -> tuple[str, ...]:
        return tuple(self._ids[i] for i in self._roots)

    def children(self, node_id: str) -> tuple[str, ...]:
        return tuple(self._ids[c] for c in self._children[self._idx(node_id)])

    def ancestors(self, node_id: str, include_self: bool = False) -> list[str]:
        """Path towards the root, nearest first."""
        i = self._idx(node_id)
        path = [node_id] if include_self else []
        j = self._parent[i]
        while j != _ROOT:
            path.append(self._ids[j])
            j = self._parent[j]
        return path

    def _walk(self, i: int) -> Iterator[int]:
        stack = [i]
        while stack:
            j = stack.pop()
            yield j
            stack.extend(reversed(self._children[j]))

    def subtree(self, node_id: str) -> list[str]:
        """Pre-order node ids of the subtree rooted at *node_id* (inclusive)."""
        return [self._ids[j] for j in self._walk(self._idx(node_id))]

    def descendants_at_level(self, node_id: str, level: OrgLevel) -> list[str]:
        return [
            self._ids[j]
            for j in self._walk(self._idx(node_id))
            if self._records[j].level == level
        ]

    def nearest_ancestor_at_level(
        self,
        node_id: str,
        level: OrgLevel,
        include_self: bool = True,
    ) -> Optional[str]:
        for nid in self.ancestors(node_id, include_self=include_self):
            if self.level_of(nid) == level:
                return nid
        return None

    def is_within(self, node_id: str, root_id: str) -> bool:
        """True when *node_id* is *root_id* or one of its descendants."""
        if node_id not in self._pos or root_id not in self._pos:
            return False
        return root_id in self.ancestors(node_id, include_self=True)

    def employees_under(self, node_id: str) -> tuple[str, ...]:
        return tuple(self._ids[j] for j in self._employees_under[self._idx(node_id)])

    def country_code(self, node_id: str) -> Optional[str]:
        """Code of the enclosing country node (falls back to its id)."""
        country = self.nearest_ancestor_at_level(node_id, OrgLevel.country)
        if country is None:
            return None
        rec = self._records[self._pos[country]]
        return rec.code or rec.node_id

    def shape(self) -> tuple[tuple[str, Optional[str], str], ...]:
        """Canonical (id, parent, level) triples; equal for equal input."""
        return tuple(
            (r.node_id, r.parent_id, r.level.value) for r in self._records
        )
