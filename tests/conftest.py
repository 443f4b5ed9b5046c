"""Shared test fixtures — async DB, client, auth helpers, org datasets.

Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.

Reference dataset ``acme_rows()`` (week 2026-03-02 Mon .. 2026-03-06 Fri):

    C-US (country, US)
    └── R-EAST (region)
        ├── L-1 (leader)
        │   ├── T-A  6 people, NYC, present Mon-Fri
        │   ├── T-B  6 people, NYC, present Mon-Wed
        │   └── T-C  3 people, BOS, present Mon-Fri
        └── L-2 (leader)
            ├── T-D  7 people, CHI, present Mon-Thu
            └── T-E  5 people, CHI, present Mon-Tue
"""

from __future__ import annotations

import os

# Set test settings before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("QUERY_TIMEOUT_SECONDS", "0.05")
os.environ.setdefault("QUERY_RATE_LIMIT", "1000/minute")

from datetime import date, datetime, timedelta, timezone
from typing import AsyncGenerator, Iterable, Optional, Union

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from compliance_engine.analytics.service import AggregationQueryService
from compliance_engine.auth.schemas import Principal
from compliance_engine.common.constants import RoleTier
from compliance_engine.config import settings
from compliance_engine.database import Base, get_db
from compliance_engine.ingestion.models import (
    EmployeeRow,
    HolidayRow,
    LeaveRow,
    OrgUnit,
    PresenceEvent,
)
from compliance_engine.ingestion.service import IngestionService
from compliance_engine.main import create_app
from compliance_engine.snapshot.recompute import RecomputeJob
from compliance_engine.snapshot.snapshot import ComplianceSnapshot
from compliance_engine.snapshot.store import SnapshotStore, get_snapshot_store

# Register every table on Base.metadata
import compliance_engine.ingestion.models  # noqa: F401
import compliance_engine.snapshot.models  # noqa: F401


# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Reset slowapi's in-memory counters between tests."""
    from compliance_engine.common.rate_limit import limiter

    limiter.reset()
    yield


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        yield session
        await session.commit()


# ── Snapshot store ──────────────────────────────────────────────────

@pytest.fixture
def store() -> SnapshotStore:
    """Empty per-test store (the process-wide one is never touched)."""
    return SnapshotStore(history=4)


@pytest.fixture
def acme_snapshot() -> ComplianceSnapshot:
    return build_snapshot(**acme_rows())


@pytest.fixture
def acme_store(store, acme_snapshot) -> SnapshotStore:
    store.publish(acme_snapshot)
    return store


@pytest.fixture
def acme_service(acme_store) -> AggregationQueryService:
    return AggregationQueryService(acme_store, threshold=6, benchmark=0.70)


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app(store):
    """Fresh app with DB and snapshot store dependencies overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    application.dependency_overrides[get_snapshot_store] = lambda: store
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ── Auth helpers ────────────────────────────────────────────────────

def create_access_token(
    sub: str,
    role: Union[RoleTier, str],
    home_node: str,
    *,
    token_type: str = "access",
    expires_delta: timedelta = timedelta(minutes=30),
) -> str:
    """Mint a token the way the identity provider would."""
    payload = {
        "sub": sub,
        "role": role.value if isinstance(role, RoleTier) else role,
        "home_node": home_node,
        "type": token_type,
        "exp": datetime.now(timezone.utc) + expires_delta,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def auth_headers(role: RoleTier, home_node: str, sub: str = "user-1") -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(sub, role, home_node)}"}


def principal(role: RoleTier, home_node: str, sub: str = "user-1") -> Principal:
    return Principal(principal_id=sub, role_tier=role, home_node_id=home_node)


# ── Row factories ───────────────────────────────────────────────────

VERSION = datetime(2026, 3, 9, 6, 0, tzinfo=timezone.utc)
HIRED = date(2025, 1, 1)
WEEK_START = date(2026, 3, 2)
WEEK_END = date(2026, 3, 6)


def org_unit(node_id: str, parent_id: Optional[str], level: str, code: Optional[str] = None) -> dict:
    return dict(node_id=node_id, parent_id=parent_id, level=level, name=node_id, code=code)


def employee(
    employee_id: str,
    manager_id: str,
    *,
    location: Optional[str] = None,
    hire_date: date = HIRED,
    termination_date: Optional[date] = None,
) -> dict:
    return dict(
        employee_id=employee_id,
        manager_id=manager_id,
        location=location,
        hire_date=hire_date,
        termination_date=termination_date,
    )


def presence(employee_id: str, days: Iterable[date], hour: int = 9) -> list[dict]:
    return [
        dict(
            employee_id=employee_id,
            occurred_at=datetime(d.year, d.month, d.day, hour, 0, tzinfo=timezone.utc),
            location=None,
        )
        for d in days
    ]


def holiday(scope: str, day: date, name: Optional[str] = None) -> dict:
    return dict(scope=scope, holiday_date=day, name=name)


def days_from(start: date, count: int) -> list[date]:
    return [start + timedelta(days=i) for i in range(count)]


def build_snapshot(
    *,
    org_units: Iterable[dict] = (),
    employees: Iterable[dict] = (),
    presence: Iterable[dict] = (),
    leave: Iterable[dict] = (),
    holidays: Iterable[dict] = (),
    version: datetime = VERSION,
    threshold: int = 6,
) -> ComplianceSnapshot:
    inputs = IngestionService.from_rows(
        org_units=org_units,
        employees=employees,
        presence=presence,
        leave=leave,
        holidays=holidays,
    )
    return RecomputeJob(threshold=threshold, default_calendar="US", workers=2).run(
        inputs, version
    )


async def seed(db: AsyncSession, rows: dict) -> None:
    """Write row factories' output into the staging tables."""
    tables = {
        "org_units": OrgUnit,
        "employees": EmployeeRow,
        "presence": PresenceEvent,
        "leave": LeaveRow,
        "holidays": HolidayRow,
    }
    for stream, model in tables.items():
        db.add_all(model(**row) for row in rows.get(stream, ()))
    await db.commit()


# ── Datasets ────────────────────────────────────────────────────────

# team id → (leader, headcount, location, weekdays present starting Monday)
ACME_TEAMS = {
    "T-A": ("L-1", 6, "NYC", 5),
    "T-B": ("L-1", 6, "NYC", 3),
    "T-C": ("L-1", 3, "BOS", 5),
    "T-D": ("L-2", 7, "CHI", 4),
    "T-E": ("L-2", 5, "CHI", 2),
}


def acme_member_ids(team: str) -> list[str]:
    prefix = team[-1].lower()
    return [f"{prefix}{i}" for i in range(1, ACME_TEAMS[team][1] + 1)]


def acme_rows() -> dict:
    units = [
        org_unit("C-US", None, "country", code="US"),
        org_unit("R-EAST", "C-US", "region"),
        org_unit("L-1", "R-EAST", "leader"),
        org_unit("L-2", "R-EAST", "leader"),
    ]
    employees, events = [], []
    for team, (leader, _, location, present_days) in ACME_TEAMS.items():
        units.append(org_unit(team, leader, "team"))
        for eid in acme_member_ids(team):
            employees.append(employee(eid, team, location=location))
            events.extend(presence(eid, days_from(WEEK_START, present_days)))
    return dict(
        org_units=units,
        employees=employees,
        presence=events,
        holidays=[holiday("US", date(2026, 1, 1), "New Year's Day")],
    )


def two_country_rows() -> dict:
    """US (Sat/Sun weekend, holiday Wed 2026-03-04) and SA (Fri/Sat weekend).

    Window 2026-03-01 (Sun) .. 2026-03-07 (Sat):
      US eligible: Mar 2, 3, 5, 6   u1-u3 present all 4, u4-u6 on Mar 2, 3 (+ the holiday)
      SA eligible: Mar 1 .. 5       s1-s6 present Mar 1 .. 4
    """
    units = []
    for cc in ("US", "SA"):
        units += [
            org_unit(f"C-{cc}", None, "country", code=cc),
            org_unit(f"R-{cc}", f"C-{cc}", "region"),
            org_unit(f"L-{cc}", f"R-{cc}", "leader"),
            org_unit(f"T-{cc}", f"L-{cc}", "team"),
        ]
    employees, events = [], []
    for i in range(1, 7):
        employees.append(employee(f"u{i}", "T-US", location="NYC"))
        employees.append(employee(f"s{i}", "T-SA", location="RUH"))
        us_days = [date(2026, 3, d) for d in ((2, 3, 5, 6) if i <= 3 else (2, 3, 4))]
        events.extend(presence(f"u{i}", us_days))
        events.extend(presence(f"s{i}", days_from(date(2026, 3, 1), 4)))
    return dict(
        org_units=units,
        employees=employees,
        presence=events,
        holidays=[
            holiday("US", date(2026, 3, 4), "Company Day"),
            holiday("SA", date(2026, 9, 23), "National Day"),
        ],
    )


def single_team_rows(present_days_per_member: list[int]) -> dict:
    """One leader L-X with one team T-X; member i is present on the first N weekdays."""
    units = [org_unit("L-X", None, "leader"), org_unit("T-X", "L-X", "team")]
    employees, events = [], []
    for i, n in enumerate(present_days_per_member, start=1):
        employees.append(employee(f"x{i}", "T-X", location="NYC"))
        events.extend(presence(f"x{i}", days_from(WEEK_START, n)))
    return dict(
        org_units=units,
        employees=employees,
        presence=events,
        holidays=[holiday("US", date(2026, 1, 1))],
    )


def mixed_location_rows() -> dict:
    """Teams that straddle locations under one leader L-M.

      T1  6 people, NYC, present Mon-Fri
      T2  6 people, NYC, present Mon-Thu, plus m1 in BOS present Monday only
      T3  6 people, CHI, present Mon-Wed

    Every team is large enough to publish, but NYC differs from T1 + T2 by
    the single BOS employee.
    """
    units = [org_unit("L-M", None, "leader")]
    employees, events = [], []
    for team, location, present_days in (("T1", "NYC", 5), ("T2", "NYC", 4), ("T3", "CHI", 3)):
        units.append(org_unit(team, "L-M", "team"))
        for i in range(1, 7):
            eid = f"{team.lower()}-{i}"
            employees.append(employee(eid, team, location=location))
            events.extend(presence(eid, days_from(WEEK_START, present_days)))
    employees.append(employee("m1", "T2", location="BOS"))
    events.extend(presence("m1", [WEEK_START]))
    return dict(
        org_units=units,
        employees=employees,
        presence=events,
        holidays=[holiday("US", date(2026, 1, 1))],
    )
