"""Process-wide scheduler owning every periodic trigger."""

from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from insights.config import get_schedule_config
from insights.pipeline import collect_only, process_only, run_pipeline
from insights.retention import health_check, run_daily_cleanup, run_light_cleanup

logger = logging.getLogger(__name__)


class PipelineScheduler:
    """Cron-style jobs for the pipeline, its lighter triggers, cleanup and health.

    Each job runs at most one instance at a time; different jobs may overlap.
    Call ``start()`` from inside a running event loop and ``shutdown()`` on exit.
    """

    def __init__(self, config: dict):
        self.config = config
        self.settings = get_schedule_config(config)
        kwargs = {
            "job_defaults": {
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 30,
            },
        }
        if self.settings["timezone"]:
            kwargs["timezone"] = self.settings["timezone"]
        self.scheduler = AsyncIOScheduler(**kwargs)

    def _jobs(self) -> dict:
        return {
            "full_pipeline": self.full_pipeline_job,
            "collect": self.collect_job,
            "process": self.process_job,
            "cleanup": self.cleanup_job,
            "light_cleanup": self.light_cleanup_job,
            "health_check": self.health_check_job,
        }

    def register_jobs(self) -> list[str]:
        """Add every job with a cron expression; an empty expression disables it."""
        registered = []
        for job_id, func in self._jobs().items():
            expr = self.settings["jobs"].get(job_id)
            if not expr:
                logger.info("Job '%s' disabled", job_id)
                continue
            trigger = CronTrigger.from_crontab(expr, timezone=self.scheduler.timezone)
            self.scheduler.add_job(func, trigger, id=job_id, replace_existing=True)
            registered.append(job_id)
        return registered

    def start(self) -> None:
        jobs = self.register_jobs()
        self.scheduler.start()
        logger.info("Scheduler started with jobs: %s", ", ".join(jobs) or "none")

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

    @property
    def running(self) -> bool:
        return self.scheduler.running

    # --- job bodies: log and swallow so the scheduler keeps running ---

    async def full_pipeline_job(self) -> None:
        logger.info("Scheduled full pipeline starting")
        try:
            run = await run_pipeline(self.config)
        except Exception:
            logger.exception("Scheduled full pipeline crashed")
            return
        if run.success:
            logger.info(
                "Scheduled pipeline done: %d collected, %d processed in %dms",
                run.collected, run.processed, run.execution_time_ms,
            )
        else:
            logger.error("Scheduled pipeline failed: %s", run.error)

    async def collect_job(self) -> None:
        try:
            collected = await collect_only(self.config)
            logger.info("Scheduled collection done: %d articles", collected)
        except Exception:
            logger.exception("Scheduled collection failed")

    async def process_job(self) -> None:
        try:
            processed = await process_only(self.config)
            logger.info("Scheduled processing done: %d articles", processed)
        except Exception:
            logger.exception("Scheduled processing failed")

    def cleanup_job(self) -> None:
        try:
            run_daily_cleanup(self.config)
        except Exception:
            logger.exception("Scheduled cleanup failed")

    def light_cleanup_job(self) -> None:
        try:
            run_light_cleanup(self.config)
        except Exception:
            logger.exception("Scheduled light cleanup failed")

    def health_check_job(self) -> None:
        try:
            health_check(self.config)
        except Exception:
            logger.exception("Health check failed")
