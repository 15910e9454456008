# library_system/tasks/scheduler.py
from __future__ import annotations

import atexit
import os
import threading

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from flask import has_app_context

from library_system.errors import Conflict, NotFound
from library_system.tasks import maintenance

JOBS = {
    "overdue_sweep": maintenance.run_overdue_sweep,
    "due_reminders": maintenance.send_due_reminders,
    "overdue_notices": maintenance.send_overdue_notices,
    "token_purge": maintenance.purge_expired_tokens,
}


class JobScheduler:
    """
    Owns the maintenance jobs of one app.

    - Scheduled runs go through APScheduler (max_instances=1, coalesce).
    - run_job() executes a job right away, for admins and tests.
    - A per-job lock keeps scheduled and manual runs of the same job from
      overlapping: a run that finds the job busy is skipped.
    """

    def __init__(self, app):
        self.app = app
        self._locks = {name: threading.Lock() for name in JOBS}
        self._scheduler = None

    @property
    def running(self) -> bool:
        return bool(self._scheduler and self._scheduler.running)

    def triggers(self) -> dict:
        cfg = self.app.config
        tz = cfg["SCHEDULER_TIMEZONE"]
        return {
            "overdue_sweep": IntervalTrigger(minutes=cfg["OVERDUE_SWEEP_MINUTES"], timezone=tz),
            "due_reminders": CronTrigger(hour=cfg["DUE_REMINDER_HOUR"], minute=0, timezone=tz),
            "overdue_notices": CronTrigger(hour=cfg["OVERDUE_NOTICE_HOUR"], minute=0, timezone=tz),
            "token_purge": CronTrigger(hour=cfg["TOKEN_PURGE_HOUR"], minute=0, timezone=tz),
        }

    def _invoke(self, name: str):
        lock = self._locks[name]
        if not lock.acquire(blocking=False):
            self.app.logger.warning(f"[scheduler] {name} is still running, this run is skipped")
            return None
        try:
            self.app.logger.info(f"[scheduler] {name} started")
            return JOBS[name]()
        finally:
            lock.release()

    def run_job(self, name: str) -> dict:
        if name not in JOBS:
            raise NotFound(f"Unknown job: {name}")
        if has_app_context():
            result = self._invoke(name)
        else:
            with self.app.app_context():
                result = self._invoke(name)
        if result is None:
            raise Conflict(f"Job {name} is already running")
        return result

    def _scheduled(self, name: str):
        with self.app.app_context():
            try:
                self._invoke(name)
            except Exception as ex:
                self.app.logger.exception(f"[scheduler] {name} error: {ex}")

    def start(self):
        if self.running:
            return
        scheduler = BackgroundScheduler(timezone=self.app.config["SCHEDULER_TIMEZONE"])
        for name, trigger in self.triggers().items():
            scheduler.add_job(
                func=self._scheduled,
                args=(name,),
                trigger=trigger,
                id=name,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
                misfire_grace_time=120,
            )
        scheduler.start()
        self._scheduler = scheduler
        atexit.register(self.shutdown)
        self.app.logger.info(f"[scheduler] started jobs: {', '.join(JOBS)}")

    def shutdown(self, wait: bool = False):
        if not self.running:
            return
        self._scheduler.shutdown(wait=wait)
        self._scheduler = None
        self.app.logger.info("[scheduler] Scheduler shutdown.")

    def next_runs(self) -> dict:
        if not self.running:
            return {}
        return {job.id: job.next_run_time for job in self._scheduler.get_jobs()}


def start_scheduler(app) -> JobScheduler:
    """
    Attaches a JobScheduler to the app and starts it when SCHEDULER_ENABLED.
    The Werkzeug debug reloader runs the app twice; only the child process
    (WERKZEUG_RUN_MAIN=true) starts the timers.
    """
    job_scheduler = JobScheduler(app)
    app.extensions["job_scheduler"] = job_scheduler

    if not app.config["SCHEDULER_ENABLED"]:
        app.logger.info("[scheduler] disabled by configuration")
        return job_scheduler
    if app.debug and os.environ.get("WERKZEUG_RUN_MAIN") != "true":
        app.logger.info("[scheduler] Debug reloader secondary process: scheduler skipped.")
        return job_scheduler

    job_scheduler.start()
    return job_scheduler
