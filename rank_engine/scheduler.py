"""Recurring rank tracking built on APScheduler."""

import asyncio
import logging
import re
from pathlib import Path
from typing import Any, Callable, Optional

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from rank_engine.utils.helpers import normalize_domain

logger = logging.getLogger(__name__)

# Monday 06:00, matching the weekly cadence rank reports are read at.
DEFAULT_WEEKLY_CRON = "0 6 * * 1"


def run_scheduled_batch(
    domain: str,
    keywords: list[str],
    location: Optional[str] = None,
    client_id: Optional[str] = None,
    config_path: str = "config/settings.yaml",
) -> dict[str, Any]:
    """Job entry point: run one tracking batch in a fresh event loop.

    Module-level so persistent job stores can reference it by import path.
    """
    from rank_engine.app import RankEngine

    engine = RankEngine(config_path=config_path)
    engine.initialize()
    logger.info("Scheduled rank tracking for %r (%d keyword(s))", domain, len(keywords))
    result = asyncio.run(engine.run_batch({
        "domain": domain,
        "keywords": keywords,
        "location": location,
        "clientId": client_id,
    }))
    logger.info(
        "Scheduled batch for %r finished: %d/%d succeeded",
        domain, result["successful"], result["total"],
    )
    return result


def tracking_job_id(domain: str, client_id: Optional[str] = None) -> str:
    """Stable job id for a domain (and optional client)."""
    slug = re.sub(r"[^a-z0-9]+", "_", normalize_domain(domain)).strip("_")
    return f"rank_tracking_{client_id}_{slug}" if client_id else f"rank_tracking_{slug}"


class RankScheduler:
    """Wrapper around APScheduler for recurring rank-tracking batches.

    Usage::

        sched = RankScheduler()
        sched.schedule_weekly_tracking("example.com", ["crm", "erp"])
        sched.start()
        sched.list_jobs()
        sched.stop()
    """

    def __init__(
        self,
        job_store_url: Optional[str] = "sqlite:///data/scheduler_jobs.db",
        timezone: str = "UTC",
        max_workers: int = 1,
        config_path: str = "config/settings.yaml",
    ):
        if job_store_url is None:
            store = MemoryJobStore()
        else:
            if job_store_url.startswith("sqlite:///"):
                db_path = job_store_url.replace("sqlite:///", "")
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)
            store = SQLAlchemyJobStore(url=job_store_url)

        self._scheduler = BackgroundScheduler(
            jobstores={"default": store},
            executors={"default": ThreadPoolExecutor(max_workers=max_workers)},
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 3600,
            },
            timezone=timezone,
        )
        self._timezone = timezone
        self._config_path = config_path
        self._running = False
        logger.info(
            "RankScheduler initialized (store=%s, tz=%s, workers=%d)",
            job_store_url or "memory", timezone, max_workers,
        )

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self, paused: bool = False) -> None:
        """Start the scheduler.

        With ``paused=True`` jobs are written to the job store and their next
        run times computed, but nothing executes.
        """
        if self._running:
            logger.warning("Rank scheduler already running")
            return
        self._scheduler.start(paused=paused)
        self._running = True
        logger.info("Scheduler started%s.", " (paused)" if paused else "")

    def stop(self, wait: bool = True) -> None:
        if not self._running:
            return
        self._scheduler.shutdown(wait=wait)
        self._running = False
        logger.info("Rank scheduler stopped")

    def add_job(
        self,
        job_id: str,
        func: Callable,
        cron: str,
        args: Optional[tuple] = None,
        kwargs: Optional[dict[str, Any]] = None,
        replace_existing: bool = True,
    ) -> None:
        """Register ``func`` on a five-field cron schedule (min hour dom mon dow).

        Raises:
            ValueError: ``cron`` does not have exactly five fields.
        """
        parts = cron.strip().split()
        if len(parts) != 5:
            raise ValueError(f"Expected 5 cron fields (min hour dom mon dow), got {len(parts)} in {cron!r}")

        trigger = CronTrigger(
            minute=parts[0],
            hour=parts[1],
            day=parts[2],
            month=parts[3],
            day_of_week=parts[4],
            timezone=self._timezone,
        )
        # Pending jobs of a stopped scheduler are not de-duplicated by id.
        if replace_existing and not self._running and self._scheduler.get_job(job_id) is not None:
            self._scheduler.remove_job(job_id)
        self._scheduler.add_job(
            func,
            trigger=trigger,
            id=job_id,
            args=args or (),
            kwargs=kwargs or {},
            replace_existing=replace_existing,
        )
        logger.info("Scheduled %s with cron %r", job_id, cron)

    def schedule_weekly_tracking(
        self,
        domain: str,
        keywords: list[str],
        location: Optional[str] = None,
        client_id: Optional[str] = None,
        cron: str = DEFAULT_WEEKLY_CRON,
    ) -> str:
        """Register a recurring batch for ``domain``; returns the job id."""
        job_id = tracking_job_id(domain, client_id)
        self.add_job(
            job_id=job_id,
            func=run_scheduled_batch,
            cron=cron,
            kwargs={
                "domain": domain,
                "keywords": list(keywords),
                "location": location,
                "client_id": client_id,
                "config_path": self._config_path,
            },
        )
        return job_id

    def remove_job(self, job_id: str) -> bool:
        """Unregister a job; ``False`` when no such job exists."""
        if self._scheduler.get_job(job_id) is None:
            logger.warning("No scheduled job %s to remove", job_id)
            return False
        self._scheduler.remove_job(job_id)
        logger.info("Unscheduled %s", job_id)
        return True

    def list_jobs(self) -> list[dict[str, Any]]:
        return [self._job_info(job) for job in self._scheduler.get_jobs()]

    def get_job(self, job_id: str) -> Optional[dict[str, Any]]:
        job = self._scheduler.get_job(job_id)
        return self._job_info(job) if job is not None else None

    @staticmethod
    def _job_info(job: Any) -> dict[str, Any]:
        next_run = getattr(job, "next_run_time", None)
        return {
            "id": job.id,
            "name": job.name,
            "trigger": str(job.trigger),
            "next_run_time": next_run.isoformat() if next_run else None,
            "kwargs": dict(job.kwargs),
        }
