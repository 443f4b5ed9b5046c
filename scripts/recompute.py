#!/usr/bin/env python3
"""Compliance recompute — run one ingestion + recompute cycle from cron.

Reads the ingestion tables from DATABASE_URL, rebuilds the compliance
snapshot, and persists it together with its inputs. A running API loads
it on POST /api/v1/compliance/snapshots/reload or at its next start;
this script never talks to a running server.

Usage:
    python -m scripts.recompute               # recompute and persist
    python -m scripts.recompute --dry-run     # report only, write nothing
    python -m scripts.recompute --json        # machine-readable summary

Exit codes:
    0 = snapshot built (and persisted unless --dry-run)
    1 = ingested data failed integrity checks; nothing was written
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from compliance_engine.common.exceptions import DataIntegrityError
from compliance_engine.common.logging_config import configure_logging
from compliance_engine.database import async_session_factory, engine
from compliance_engine.snapshot.schemas import RecomputeSummary
from compliance_engine.snapshot.service import SnapshotService
from compliance_engine.snapshot.store import SnapshotStore

logger = logging.getLogger("recompute")


# ══════════════════════════════════════════════════════════════════════
# Run
# ══════════════════════════════════════════════════════════════════════


async def run(dry_run: bool) -> RecomputeSummary:
    # Local store: publication only matters inside the API process
    store = SnapshotStore(history=1)
    try:
        async with async_session_factory() as session:
            try:
                summary = await SnapshotService.recompute(session, store, dry_run=dry_run)
            except Exception:
                await session.rollback()
                raise
        return summary
    finally:
        await engine.dispose()


def print_summary(summary: RecomputeSummary) -> None:
    ingestion = summary.ingestion
    print(f"Snapshot   {summary.version.isoformat()}")
    print(f"Digest     {summary.digest}")
    print(f"Published  {'yes' if summary.published else 'no (dry run)'}")
    if summary.coverage_start:
        print(f"Coverage   {summary.coverage_start} .. {summary.coverage_end}")
    print(f"Org units  {summary.org_units}")
    print(f"Employees  {summary.employees}")
    print(f"Months     {summary.months}")
    for name in ("org_units", "employees", "presence", "leave", "holidays"):
        stream = getattr(ingestion, name)
        dropped = ", ".join(f"{k}={v}" for k, v in sorted(stream.dropped.items())) or "-"
        print(f"  {name:<10} read={stream.read:<7} accepted={stream.accepted:<7} dropped: {dropped}")


def main() -> int:
    parser = argparse.ArgumentParser(description="Rebuild the compliance snapshot")
    parser.add_argument("--dry-run", action="store_true", help="Build but do not persist")
    parser.add_argument("--json", action="store_true", help="Print the summary as JSON")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    args = parser.parse_args()

    configure_logging(args.log_level)

    try:
        summary = asyncio.run(run(args.dry_run))
    except DataIntegrityError as exc:
        logger.error("Recompute failed: %s", exc.detail)
        if exc.errors:
            logger.error("Details: %s", exc.errors)
        return 1

    if args.json:
        print(summary.model_dump_json(indent=2))
    else:
        print_summary(summary)
    return 0


if __name__ == "__main__":
    sys.exit(main())
