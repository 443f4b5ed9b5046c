"""Ingestion ORM models: OrgUnit, EmployeeRow, PresenceEvent, LeaveRow, HolidayRow.

These are staging tables filled by the external ETL. They deliberately use
surrogate keys and nullable columns so malformed or duplicated rows can
arrive and be counted by the ingestion pass instead of failing the load.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from compliance_engine.database import Base


class OrgUnit(Base):
    __tablename__ = "org_units"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    node_id: Mapped[Optional[str]] = mapped_column(sa.String(64), index=True)
    parent_id: Mapped[Optional[str]] = mapped_column(sa.String(64))
    level: Mapped[Optional[str]] = mapped_column(sa.String(20))
    name: Mapped[Optional[str]] = mapped_column(sa.String(200))
    code: Mapped[Optional[str]] = mapped_column(sa.String(20))


class EmployeeRow(Base):
    __tablename__ = "employees"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    employee_id: Mapped[Optional[str]] = mapped_column(sa.String(64), index=True)
    manager_id: Mapped[Optional[str]] = mapped_column(sa.String(64))
    location: Mapped[Optional[str]] = mapped_column(sa.String(20))
    hire_date: Mapped[Optional[date]] = mapped_column(sa.Date)
    termination_date: Mapped[Optional[date]] = mapped_column(sa.Date)


class PresenceEvent(Base):
    __tablename__ = "presence_events"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    employee_id: Mapped[Optional[str]] = mapped_column(sa.String(64), index=True)
    occurred_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    location: Mapped[Optional[str]] = mapped_column(sa.String(20))


class LeaveRow(Base):
    __tablename__ = "leave_records"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    employee_id: Mapped[Optional[str]] = mapped_column(sa.String(64), index=True)
    leave_date: Mapped[Optional[date]] = mapped_column(sa.Date)
    status: Mapped[Optional[str]] = mapped_column(sa.String(20), default="approved")


class HolidayRow(Base):
    __tablename__ = "holidays"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    scope: Mapped[Optional[str]] = mapped_column(sa.String(20), index=True)
    holiday_date: Mapped[Optional[date]] = mapped_column(sa.Date)
    name: Mapped[Optional[str]] = mapped_column(sa.String(200))
