"""
Scheduler: APScheduler-based trigger for enrichment cycles.
"""
import asyncio
import signal
from datetime import datetime, timezone
from typing import Any, Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from candidates_ingest.config import Settings, get_settings
from candidates_ingest.errors import SeedingError
from candidates_ingest.ingestion import CandidateEngine
from candidates_ingest.models import Credentials

logger = structlog.get_logger()


class CycleScheduler:
    """Runs one enrichment cycle every `cycle_interval_minutes`."""

    JOB_ID = "enrichment_cycle"

    def __init__(self, engine: CandidateEngine, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.engine = engine
        self.scheduler = AsyncIOScheduler(
            timezone="UTC",
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 60,
            },
        )
        self._running = False

    def _setup_jobs(self, run_now: bool = False):
        job_kwargs: dict[str, Any] = {}
        if run_now:
            job_kwargs["next_run_time"] = datetime.now(timezone.utc)

        self.scheduler.add_job(
            self.run_cycle_job,
            trigger=IntervalTrigger(minutes=self.settings.cycle_interval_minutes),
            id=self.JOB_ID,
            name="Candidates enrichment cycle",
            replace_existing=True,
            **job_kwargs,
        )
        logger.info(
            "Scheduled enrichment cycle",
            interval=f"{self.settings.cycle_interval_minutes}m",
            run_now=run_now,
        )

    async def run_cycle_job(self):
        """Execute one cycle with credentials from settings."""
        logger.info("Cron processed")

        try:
            report = await self.engine.run_cycle(Credentials.from_settings(self.settings))
            logger.info(
                "Completed scheduled cycle",
                seeded=report.seeded,
                enriched=report.enriched,
                index=report.index_after,
                calls=report.calls_made,
                error=report.enrichment_error,
                duration=report.duration_seconds,
            )
        except SeedingError as e:
            logger.warning("Scheduled cycle could not seed candidates", error=str(e))
        except Exception as e:
            logger.error("Scheduled cycle failed", error=str(e))

    def start(self, run_now: bool = False):
        """Register the interval job and start; `run_now` fires the first cycle immediately."""
        if self._running:
            logger.warning("Scheduler already running")
            return

        self._setup_jobs(run_now)
        self.scheduler.start()
        self._running = True
        logger.info("Scheduler started", jobs=len(self.scheduler.get_jobs()))

    def stop(self):
        if not self._running:
            return

        self.scheduler.shutdown(wait=False)
        self._running = False
        logger.info("Scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running


async def run_scheduler(engine: CandidateEngine, settings: Optional[Settings] = None):
    """Run the scheduler as main process."""
    settings = settings or get_settings()
    scheduler = CycleScheduler(engine, settings)
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        stop_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, signal_handler)

    await engine.load()
    scheduler.start()

    if settings.run_cycle_on_startup:
        logger.info("Running initial cycle on startup")
        await scheduler.run_cycle_job()

    try:
        await stop_event.wait()
    finally:
        scheduler.stop()
