"""Compliance Engine — FastAPI Application Factory."""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from compliance_engine.analytics.router import router as compliance_router
from compliance_engine.common.exceptions import DataIntegrityError, register_exception_handlers
from compliance_engine.common.logging_config import configure_logging
from compliance_engine.common.rate_limit import limiter
from compliance_engine.config import settings
from compliance_engine.database import async_session_factory
from compliance_engine.snapshot.service import SnapshotService
from compliance_engine.snapshot.store import SnapshotStore, get_snapshot_store, snapshot_store

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    configure_logging()
    async with async_session_factory() as session:
        await SnapshotService.load_persisted(session, snapshot_store)
    if settings.RECOMPUTE_ON_STARTUP:
        async with async_session_factory() as session:
            try:
                await SnapshotService.recompute(session, snapshot_store)
            except DataIntegrityError:
                # Already logged; keep serving what was loaded above
                await session.rollback()
    yield


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Compliance Engine",
        description="Attendance-compliance aggregation with privacy suppression and scoped access",
        version="1.0.0",
        docs_url="/api/docs" if settings.ENVIRONMENT != "production" else None,
        redoc_url="/api/redoc" if settings.ENVIRONMENT != "production" else None,
        lifespan=lifespan,
    )

    # Exception handlers (RFC 7807)
    register_exception_handlers(app)

    # Rate limiting (slowapi)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Health check (no auth)
    @app.get("/api/v1/health", tags=["system"])
    async def health_check(store: SnapshotStore = Depends(get_snapshot_store)):
        current = store.current
        return {
            "status": "healthy" if current is not None else "starting",
            "version": "1.0.0",
            "environment": settings.ENVIRONMENT,
            "snapshot_version": current.version.isoformat() if current else None,
            "snapshot_digest": current.digest if current else None,
        }

    app.include_router(compliance_router, prefix="/api/v1/compliance", tags=["compliance"])

    return app


app = create_app()
