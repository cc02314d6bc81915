"""In-process delayed task queue.

``TaskQueue`` is the only thing the orchestrator needs: ``enqueue(job,
delay)``.  ``ScheduledTaskQueue`` implements it on an APScheduler
``BackgroundScheduler``: every enqueued job becomes a one-shot
``DateTrigger`` job run on a thread-pool executor.  A handler exception is
logged and does not affect other jobs.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Protocol

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger

logger = logging.getLogger(__name__)


class TaskQueue(Protocol):
    def enqueue(self, job: Any, delay: float = 0.0) -> None: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ScheduledTaskQueue:
    """Delayed job queue backed by a background scheduler.

    Jobs enqueued before :meth:`start` are held by the scheduler and run
    once it starts; late jobs are never dropped as misfires.

    Args:
        handler: Called with each job on an executor thread.
        workers: Size of the executor's thread pool.
    """

    def __init__(self, handler: Callable[[Any], None], workers: int = 2):
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self._handler = handler
        self._workers = workers
        self._scheduler = BackgroundScheduler(
            executors={"default": ThreadPoolExecutor(workers)},
            job_defaults={"misfire_grace_time": None, "coalesce": False},
            timezone=timezone.utc,
        )
        self._lock = threading.Lock()
        # job id -> due time, for jobs not yet picked up by a worker
        self._waiting: dict[str, datetime] = {}
        self._active = 0
        self._running = False

    def enqueue(self, job: Any, delay: float = 0.0) -> None:
        job_id = uuid.uuid4().hex
        run_date = _utcnow() + timedelta(seconds=max(delay, 0.0))
        with self._lock:
            self._waiting[job_id] = run_date
        self._scheduler.add_job(
            self._run,
            trigger=DateTrigger(run_date=run_date, timezone=timezone.utc),
            args=[job_id, job],
            id=job_id,
            name=type(job).__name__,
        )
        logger.debug("Enqueued %s (delay %.1fs)", type(job).__name__, delay)

    def pending(self) -> int:
        """Number of jobs waiting (due or not)."""
        with self._lock:
            return len(self._waiting)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the scheduler.  No-op if already running."""
        if self._running:
            return
        self._scheduler.start()
        self._running = True
        logger.info("Task queue started with %d worker(s)", self._workers)

    def stop(self) -> None:
        """Shut the scheduler down, waiting for running jobs.

        No-op if not running.  Jobs not yet started are not run.
        """
        if not self._running:
            return
        self._running = False
        self._scheduler.shutdown(wait=True)
        logger.info("Task queue stopped (%d job(s) left pending)", self.pending())

    @property
    def is_running(self) -> bool:
        return self._running

    def join(self, timeout: float | None = None) -> bool:
        """Block until no job is due or running.

        Jobs scheduled in the future do not count.  Returns ``False`` on
        timeout.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while self._busy():
            if deadline is not None and time.monotonic() >= deadline:
                return False
            time.sleep(0.02)
        return True

    def _busy(self) -> bool:
        now = _utcnow()
        with self._lock:
            return bool(self._active) or any(
                due <= now for due in self._waiting.values()
            )

    def _run(self, job_id: str, job: Any) -> None:
        with self._lock:
            self._waiting.pop(job_id, None)
            self._active += 1
        try:
            self._handler(job)
        except Exception:
            logger.exception("Unhandled error running %s", type(job).__name__)
        finally:
            with self._lock:
                self._active -= 1
