"""Snapshot service — run a recompute cycle, persist it, publish it.

A failed cycle (integrity error or anything else) publishes nothing; the
previous snapshot stays authoritative. A version is only published once its
row is committed, and each row carries the inputs it was computed from so
that a restarted process (or one serving a cron-run recompute) can rebuild
it and verify it against the stored digest.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from compliance_engine.common.exceptions import DataIntegrityError
from compliance_engine.config import settings
from compliance_engine.ingestion.schemas import IngestionSummary
from compliance_engine.ingestion.service import IngestionService, SnapshotInputs
from compliance_engine.snapshot.models import ComplianceSnapshotRecord
from compliance_engine.snapshot.recompute import RecomputeJob
from compliance_engine.snapshot.schemas import RecomputeSummary, SnapshotVersionItem
from compliance_engine.snapshot.snapshot import ComplianceSnapshot
from compliance_engine.snapshot.store import SnapshotStore

logger = logging.getLogger(__name__)


def _summary(snapshot: ComplianceSnapshot, published: bool) -> RecomputeSummary:
    return RecomputeSummary(
        version=snapshot.version,
        digest=snapshot.digest,
        published=published,
        coverage_start=snapshot.coverage.start if snapshot.coverage else None,
        coverage_end=snapshot.coverage.end if snapshot.coverage else None,
        org_units=len(snapshot.org_units()),
        employees=len(snapshot.facts),
        months=len(snapshot.months),
        ingestion=snapshot.summary,
    )


class SnapshotService:
    """Async orchestration around ``RecomputeJob`` and ``SnapshotStore``."""

    @staticmethod
    async def recompute(
        db: AsyncSession,
        store: SnapshotStore,
        *,
        dry_run: bool = False,
        version: Optional[datetime] = None,
    ) -> RecomputeSummary:
        """Ingest → recompute → persist → commit → publish."""
        inputs = await IngestionService.load(db)
        job = RecomputeJob(
            threshold=settings.SUPPRESSION_THRESHOLD,
            default_calendar=settings.DEFAULT_CALENDAR,
            workers=settings.RECOMPUTE_WORKERS,
        )
        try:
            snapshot = await run_in_threadpool(job.run, inputs, version)
        except DataIntegrityError as exc:
            logger.error("Recompute aborted, keeping previous snapshot: %s", exc.detail)
            raise

        if dry_run:
            return _summary(snapshot, published=False)

        await SnapshotService.persist(db, snapshot, inputs)
        await db.commit()
        store.publish(snapshot)
        return _summary(snapshot, published=True)

    @staticmethod
    async def persist(
        db: AsyncSession,
        snapshot: ComplianceSnapshot,
        inputs: SnapshotInputs,
    ) -> ComplianceSnapshotRecord:
        record = ComplianceSnapshotRecord(
            version=snapshot.version,
            digest=snapshot.digest,
            coverage_start=snapshot.coverage.start if snapshot.coverage else None,
            coverage_end=snapshot.coverage.end if snapshot.coverage else None,
            ingestion_summary=snapshot.summary.model_dump(),
            payload=snapshot.payload(),
            inputs={
                "threshold": snapshot.threshold,
                "default_calendar": snapshot.calendar.default_calendar,
                "rows": inputs.to_rows(),
            },
        )
        db.add(record)
        await db.flush()
        return record

    @staticmethod
    def rebuild(record: ComplianceSnapshotRecord) -> ComplianceSnapshot:
        """Recompute a persisted version from its stored inputs.

        Raises ``DataIntegrityError`` when the result does not reproduce the
        stored digest.
        """
        stored = record.inputs
        version = _as_utc(record.version)
        inputs = replace(
            IngestionService.from_rows(**stored["rows"]),
            summary=IngestionSummary.model_validate(record.ingestion_summary),
        )
        job = RecomputeJob(
            threshold=stored["threshold"],
            default_calendar=stored["default_calendar"],
            workers=settings.RECOMPUTE_WORKERS,
        )
        snapshot = job.run(inputs, version)
        if snapshot.digest != record.digest:
            raise DataIntegrityError(
                f"Snapshot {version.isoformat()} rebuilt to digest {snapshot.digest[:12]}, "
                f"stored {record.digest[:12]}.",
                errors={"version": [version.isoformat()]},
            )
        return snapshot

    @staticmethod
    async def load_persisted(
        db: AsyncSession,
        store: SnapshotStore,
        *,
        limit: Optional[int] = None,
    ) -> list[datetime]:
        """Rebuild the newest persisted versions into *store*, oldest first.

        Versions the store already holds are skipped. A row that no longer
        reproduces its digest is logged and left out; the others still load.
        """
        limit = settings.SNAPSHOT_HISTORY if limit is None else limit
        result = await db.execute(
            select(ComplianceSnapshotRecord)
            .order_by(ComplianceSnapshotRecord.version.desc())
            .limit(limit)
        )
        held = {s.version for s in store.versions()}
        loaded: list[datetime] = []
        for record in reversed(result.scalars().all()):
            version = _as_utc(record.version)
            if version in held:
                continue
            try:
                snapshot = await run_in_threadpool(SnapshotService.rebuild, record)
            except DataIntegrityError as exc:
                logger.error("Skipping persisted snapshot %s: %s", version.isoformat(), exc.detail)
                continue
            store.publish(snapshot)
            loaded.append(version)
        logger.info("Loaded %d persisted snapshot(s)", len(loaded))
        return loaded

    @staticmethod
    async def list_versions(db: AsyncSession, store: SnapshotStore) -> list[SnapshotVersionItem]:
        """Persisted versions, newest first, flagging the one being served."""
        result = await db.execute(
            select(ComplianceSnapshotRecord).order_by(ComplianceSnapshotRecord.version.desc())
        )
        current = store.current
        items = []
        for rec in result.scalars().all():
            item = SnapshotVersionItem.model_validate(rec)
            item.is_current = current is not None and current.digest == rec.digest and _same_instant(
                current.version, rec.version
            )
            items.append(item)
        return items


def _as_utc(moment: datetime) -> datetime:
    # SQLite drops tzinfo on the way back; versions are always written in UTC
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def _same_instant(a: datetime, b: datetime) -> bool:
    return _as_utc(a) == _as_utc(b)
