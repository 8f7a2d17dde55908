from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MISSED, JobExecutionEvent
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .engine import SyncEngine, SyncReport, format_sync_notification


logger = logging.getLogger(__name__)

JOB_ID = "quote-sync"


def _log_report(report: SyncReport) -> None:
    logger.info(format_sync_notification(report))


class PeriodicSync:
    """
    Runs `engine.sync()` every `interval` seconds on an APScheduler
    `BackgroundScheduler`.

    - `start()` / `stop()` are explicit; `start()` on a running scheduler is a no-op.
      Each `start()` builds a fresh scheduler, and `stop()` shuts the previous
      one down, so at most one timer is ever active.
    - The job runs with `max_instances=1` and `coalesce=True`; `trigger()` runs
      a cycle immediately in the caller's thread and shares the engine's guard
      with the timer, so overlapping cycles are skipped.
    - Each report is handed to `on_report` (defaults to logging the
      user-facing notification). Job failures are logged by an
      `EVENT_JOB_ERROR` listener and the scheduler keeps running.
    """

    def __init__(
        self,
        engine: SyncEngine,
        interval: float,
        *,
        on_report: Optional[Callable[[SyncReport], None]] = None,
        run_immediately: bool = True,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be > 0")
        self._engine = engine
        self._interval = interval
        self._on_report = on_report or _log_report
        self._run_immediately = run_immediately
        self._scheduler: Optional[BackgroundScheduler] = None
        self.last_error: Optional[BaseException] = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        if self.running:
            return
        scheduler = BackgroundScheduler()
        scheduler.add_listener(self._job_error_listener, EVENT_JOB_ERROR)
        scheduler.add_listener(self._job_missed_listener, EVENT_JOB_MISSED)

        job_kwargs: Dict[str, Any] = {}
        if self._run_immediately:
            job_kwargs["next_run_time"] = datetime.now()
        scheduler.add_job(
            self.trigger,
            trigger=IntervalTrigger(seconds=self._interval),
            id=JOB_ID,
            name="Periodic quote sync",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            **job_kwargs,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info("Periodic sync started (every %.1fs)", self._interval)

    def stop(self, wait: bool = True) -> None:
        """Shut the scheduler down; with `wait`, block until a running cycle ends."""
        scheduler, self._scheduler = self._scheduler, None
        if scheduler is not None and scheduler.running:
            scheduler.shutdown(wait=wait)
            logger.info("Periodic sync stopped")

    def trigger(self) -> SyncReport:
        report = self._engine.sync()
        self._on_report(report)
        return report

    def __enter__(self) -> "PeriodicSync":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def _job_error_listener(self, event: JobExecutionEvent) -> None:
        self.last_error = event.exception
        logger.error(
            "Periodic sync job %s failed at %s: %r\n%s",
            event.job_id,
            event.scheduled_run_time,
            event.exception,
            event.traceback or "",
        )

    def _job_missed_listener(self, event: JobExecutionEvent) -> None:
        logger.warning("Periodic sync job %s missed at %s", event.job_id, event.scheduled_run_time)


__all__ = ["JOB_ID", "PeriodicSync"]
