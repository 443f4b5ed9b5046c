"""Compliance router — structured queries, dashboard summary, snapshot admin.

Query and summary endpoints accept any authenticated role tier; the scope
resolver narrows what each caller sees. Snapshot listing and manual
recompute (and reloading versions persisted elsewhere) are restricted to
the organization tier.
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from compliance_engine.analytics.schemas import (
    ComplianceQueryRequest,
    ComplianceQueryResponse,
    ComplianceSummaryResponse,
)
from compliance_engine.analytics.service import AggregationQueryService
from compliance_engine.auth.dependencies import get_current_principal, require_tier
from compliance_engine.auth.schemas import Principal
from compliance_engine.common.constants import RoleTier
from compliance_engine.common.rate_limit import limiter
from compliance_engine.config import settings
from compliance_engine.database import get_db
from compliance_engine.snapshot.schemas import RecomputeSummary, SnapshotListResponse
from compliance_engine.snapshot.service import SnapshotService
from compliance_engine.snapshot.store import SnapshotStore, get_snapshot_store

router = APIRouter()


def get_query_service(
    store: SnapshotStore = Depends(get_snapshot_store),
) -> AggregationQueryService:
    return AggregationQueryService(store)


# ── POST /query ─────────────────────────────────────────────────────

@router.post("/query", response_model=ComplianceQueryResponse)
@limiter.limit(settings.QUERY_RATE_LIMIT)
async def run_query(
    request: Request,
    body: ComplianceQueryRequest,
    principal: Principal = Depends(get_current_principal),
    service: AggregationQueryService = Depends(get_query_service),
):
    """Compliance by dimension over a window, with per-bucket trend."""
    return await run_in_threadpool(service.execute, principal, body)


# ── GET /summary ────────────────────────────────────────────────────

@router.get("/summary", response_model=ComplianceSummaryResponse)
@limiter.limit(settings.QUERY_RATE_LIMIT)
async def compliance_summary(
    request: Request,
    start: date = Query(..., description="Window start (inclusive)"),
    end: date = Query(..., description="Window end (inclusive)"),
    view_as: Optional[RoleTier] = Query(None, description="Narrower role tier view"),
    principal: Principal = Depends(get_current_principal),
    service: AggregationQueryService = Depends(get_query_service),
):
    """KPI cards: scope compliance, change vs previous window, top location."""
    return await run_in_threadpool(service.summary, principal, start, end, view_as)


# ── GET /snapshots ──────────────────────────────────────────────────

@router.get("/snapshots", response_model=SnapshotListResponse)
async def list_snapshots(
    principal: Principal = Depends(require_tier(RoleTier.organization)),
    db: AsyncSession = Depends(get_db),
    store: SnapshotStore = Depends(get_snapshot_store),
):
    """Persisted snapshot versions, newest first."""
    return SnapshotListResponse(data=await SnapshotService.list_versions(db, store))


# ── POST /recompute ─────────────────────────────────────────────────

@router.post("/recompute", response_model=RecomputeSummary)
async def recompute(
    dry_run: bool = Query(False, description="Compute and report without publishing"),
    principal: Principal = Depends(require_tier(RoleTier.organization)),
    db: AsyncSession = Depends(get_db),
    store: SnapshotStore = Depends(get_snapshot_store),
):
    """Run one recompute cycle now and publish the result."""
    return await SnapshotService.recompute(db, store, dry_run=dry_run)


# ── POST /snapshots/reload ──────────────────────────────────────────

@router.post("/snapshots/reload", response_model=SnapshotListResponse)
async def reload_snapshots(
    principal: Principal = Depends(require_tier(RoleTier.organization)),
    db: AsyncSession = Depends(get_db),
    store: SnapshotStore = Depends(get_snapshot_store),
):
    """Pick up versions persisted by another process (e.g. the cron recompute)."""
    await SnapshotService.load_persisted(db, store)
    return SnapshotListResponse(data=await SnapshotService.list_versions(db, store))
