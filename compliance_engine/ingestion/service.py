"""Ingestion service — record streams to immutable snapshot inputs.

Business rules:
  - Every row is validated; malformed rows are dropped and counted.
  - Exact duplicate rows are dropped and counted.
  - The same employee id with conflicting attributes is a DataIntegrityError.
  - Employees reporting into an unknown node are dropped as ``orphaned``.
  - Presence / leave rows for unknown employees are dropped as
    ``unknown_employee``; leave that is not approved as ``not_approved``.
  - Org-unit shape problems (cycles, dangling parents) are left to the
    hierarchy build, which fails the whole cycle.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Type, TypeVar

from pydantic import BaseModel, ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from compliance_engine.common.constants import OrgLevel
from compliance_engine.common.exceptions import DataIntegrityError
from compliance_engine.compliance.records import (
    Employee,
    Holiday,
    LeaveRecord,
    PresenceRecord,
)
from compliance_engine.hierarchy.index import OrgNodeRecord
from compliance_engine.ingestion.models import (
    EmployeeRow,
    HolidayRow,
    LeaveRow,
    OrgUnit,
    PresenceEvent,
)
from compliance_engine.ingestion.schemas import (
    EmployeeIn,
    HolidayIn,
    IngestionSummary,
    LeaveIn,
    OrgUnitIn,
    PresenceIn,
    StreamSummary,
)

logger = logging.getLogger(__name__)

RowT = TypeVar("RowT", bound=BaseModel)

APPROVED = "approved"


@dataclass(frozen=True)
class SnapshotInputs:
    """Validated, de-duplicated record streams for one recompute."""

    org_units: tuple[OrgNodeRecord, ...] = ()
    employees: tuple[Employee, ...] = ()
    presence: tuple[PresenceRecord, ...] = ()
    leave: tuple[LeaveRecord, ...] = ()
    holidays: tuple[Holiday, ...] = ()
    summary: IngestionSummary = field(default_factory=IngestionSummary)

    def to_rows(self) -> dict[str, list[dict[str, Any]]]:
        """JSON-ready streams that ``IngestionService.from_rows`` turns back into these inputs.

        Presence is reduced to one row per employee and day, which is all a
        recompute reads from it.
        """
        return {
            "org_units": [
                {
                    "node_id": u.node_id,
                    "parent_id": u.parent_id,
                    "level": OrgLevel(u.level).value,
                    "name": u.name,
                    "code": u.code,
                }
                for u in self.org_units
            ],
            "employees": [
                {
                    "employee_id": e.employee_id,
                    "manager_id": e.manager_id,
                    "location": e.location,
                    "hire_date": e.hire_date.isoformat(),
                    "termination_date": (
                        e.termination_date.isoformat() if e.termination_date else None
                    ),
                }
                for e in self.employees
            ],
            "presence": [
                {"employee_id": eid, "occurred_at": day.isoformat()}
                for eid, day in sorted({(p.employee_id, p.date) for p in self.presence})
            ],
            "leave": [
                {"employee_id": eid, "leave_date": day.isoformat(), "status": APPROVED}
                for eid, day in sorted({(lv.employee_id, lv.date) for lv in self.leave})
            ],
            "holidays": [
                {"scope": h.scope, "holiday_date": h.date.isoformat(), "name": h.name}
                for h in self.holidays
            ],
        }


def _validate_stream(
    rows: Iterable[Any],
    schema: Type[RowT],
    stats: StreamSummary,
) -> list[RowT]:
    """Validate rows in order, dropping malformed rows and exact duplicates."""
    seen: set[RowT] = set()
    out: list[RowT] = []
    for raw in rows:
        stats.read += 1
        try:
            row = schema.model_validate(raw)
        except ValidationError:
            stats.drop("malformed")
            continue
        if row in seen:
            stats.drop("duplicate")
            continue
        seen.add(row)
        out.append(row)
    return out


class IngestionService:
    """Builds ``SnapshotInputs`` from row mappings or the staging tables."""

    @staticmethod
    def from_rows(
        *,
        org_units: Iterable[Any] = (),
        employees: Iterable[Any] = (),
        presence: Iterable[Any] = (),
        leave: Iterable[Any] = (),
        holidays: Iterable[Any] = (),
    ) -> SnapshotInputs:
        """Validate plain mappings (or ORM rows) into snapshot inputs."""
        summary = IngestionSummary()

        units = _validate_stream(org_units, OrgUnitIn, summary.org_units)
        unit_ids = {u.node_id for u in units}
        summary.org_units.accepted = len(units)

        roster: dict[str, EmployeeIn] = {}
        seen_ids: set[str] = set()
        for emp in _validate_stream(employees, EmployeeIn, summary.employees):
            if emp.employee_id in seen_ids:
                raise DataIntegrityError(
                    f"Employee '{emp.employee_id}' appears with conflicting attributes.",
                    errors={"employee_id": [emp.employee_id]},
                )
            seen_ids.add(emp.employee_id)
            if emp.manager_id not in unit_ids:
                summary.employees.drop("orphaned")
                continue
            roster[emp.employee_id] = emp
        summary.employees.accepted = len(roster)

        presence_out: list[PresenceRecord] = []
        for ev in _validate_stream(presence, PresenceIn, summary.presence):
            if ev.employee_id not in roster:
                summary.presence.drop("unknown_employee")
                continue
            presence_out.append(PresenceRecord(ev.employee_id, ev.day, ev.location))
        summary.presence.accepted = len(presence_out)

        leave_out: list[LeaveRecord] = []
        for lv in _validate_stream(leave, LeaveIn, summary.leave):
            if lv.status.lower() != APPROVED:
                summary.leave.drop("not_approved")
                continue
            if lv.employee_id not in roster:
                summary.leave.drop("unknown_employee")
                continue
            leave_out.append(LeaveRecord(lv.employee_id, lv.leave_date))
        summary.leave.accepted = len(leave_out)

        holidays_out = [
            Holiday(h.scope.upper(), h.holiday_date, h.name)
            for h in _validate_stream(holidays, HolidayIn, summary.holidays)
        ]
        summary.holidays.accepted = len(holidays_out)

        if summary.dropped_total:
            logger.warning(
                "Ingestion dropped %d rows: %s",
                summary.dropped_total,
                {
                    name: stream.dropped
                    for name, stream in summary
                    if stream.dropped
                },
            )

        return SnapshotInputs(
            org_units=tuple(
                OrgNodeRecord(u.node_id, u.parent_id, u.level, u.name, u.code)
                for u in units
            ),
            employees=tuple(
                Employee(
                    employee_id=e.employee_id,
                    manager_id=e.manager_id,
                    hire_date=e.hire_date,
                    termination_date=e.termination_date,
                    location=e.location.upper() if e.location else None,
                )
                for e in roster.values()
            ),
            presence=tuple(presence_out),
            leave=tuple(leave_out),
            holidays=tuple(holidays_out),
            summary=summary,
        )

    @staticmethod
    async def load(db: AsyncSession) -> SnapshotInputs:
        """Read all staging tables and validate them."""

        async def _rows(model) -> list[Mapping[str, Any]]:
            result = await db.execute(select(model).order_by(model.id))
            return [
                {c.key: getattr(obj, c.key) for c in model.__table__.columns if c.key != "id"}
                for obj in result.scalars().all()
            ]

        return IngestionService.from_rows(
            org_units=await _rows(OrgUnit),
            employees=await _rows(EmployeeRow),
            presence=await _rows(PresenceEvent),
            leave=await _rows(LeaveRow),
            holidays=await _rows(HolidayRow),
        )
