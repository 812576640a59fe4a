"""Background scheduler for folding pending events."""

from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI

from ..core.config import get_settings
from ..core.database import SessionLocal
from ..services.pipeline_service import run_pending_sweep

logger = logging.getLogger(__name__)

settings = get_settings()

_scheduler = AsyncIOScheduler(timezone="UTC")


async def _execute_sweep() -> None:
    session = SessionLocal()
    try:
        summary = run_pending_sweep(session)
        if summary["users_processed"] or summary["users_failed"]:
            logger.info("pending sweep completed: %s", summary)
    except Exception:  # pragma: no cover - safeguard for background job
        session.rollback()
        logger.exception("pending sweep job failed")
        raise
    finally:
        session.close()


@_scheduler.scheduled_job(
    "interval",
    seconds=settings.sweep_interval_seconds,
    id="pending_sweep",
    max_instances=1,
    coalesce=True,
)
async def _scheduled_job() -> None:
    await _execute_sweep()


def register_scheduler(app: FastAPI) -> None:
    """Attach APScheduler lifecycle hooks to the FastAPI app."""

    @app.on_event("startup")
    async def start_scheduler() -> None:
        if settings.scheduler_enabled and not _scheduler.running:
            _scheduler.start()
            logger.info("pending sweep scheduler started")

    @app.on_event("shutdown")
    async def shutdown_scheduler() -> None:
        if _scheduler.running:
            _scheduler.shutdown(wait=False)
            logger.info("pending sweep scheduler stopped")


def run_sweep_once() -> dict[str, int]:
    """Convenience helper to run the sweep synchronously for manual runs."""

    session = SessionLocal()
    try:
        return run_pending_sweep(session)
    finally:
        session.close()
