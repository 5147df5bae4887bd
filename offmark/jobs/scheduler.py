import os
import threading
import uuid
from datetime import timedelta

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler

from offmark.models import utcnow


scheduler = BackgroundScheduler()
_START_LOCK = threading.Lock()


def _ensure_running(target: BackgroundScheduler) -> None:
    with _START_LOCK:
        if not target.running:
            target.start()


class SchedulerTaskRunner:
    """Cancellable delayed callbacks backed by one-shot APScheduler jobs."""

    def __init__(self, target: BackgroundScheduler = scheduler):
        self.scheduler = target

    def schedule(self, delay_seconds: float, func, *args) -> str:
        _ensure_running(self.scheduler)
        job_id = f"task-{uuid.uuid4().hex}"
        self.scheduler.add_job(
            func,
            "date",
            run_date=utcnow() + timedelta(seconds=max(0.0, delay_seconds)),
            args=args,
            id=job_id,
            misfire_grace_time=None,
        )
        return job_id

    def cancel(self, job_id: str) -> bool:
        try:
            self.scheduler.remove_job(job_id)
        except JobLookupError:
            return False
        return True


def run_offline_sync_sweep(app):
    engine = app.extensions["offmark"]
    if engine.get_offline_pending_count() == 0:
        return
    app.logger.info("Periodic sync sweep starting")
    engine.orchestrator.run_sync()


def start_scheduler(app):
    if not app.config.get("SCHEDULER_ENABLED", True):
        return
    if os.environ.get("WERKZEUG_RUN_MAIN") == "false":
        return

    interval_minutes = app.config["AUTO_SYNC_INTERVAL_MINUTES"]
    if interval_minutes > 0:
        scheduler.add_job(
            run_offline_sync_sweep,
            "interval",
            minutes=interval_minutes,
            kwargs={"app": app},
            id="offline_sync_sweep",
            replace_existing=True,
        )
    _ensure_running(scheduler)
