"""
Polling scheduler for due jobs.

Every poll claims due jobs with an optimistic conditional update and hands
each claimed job to its own thread, so a hung job never holds up the
others and several scheduler processes can share one database without
running a job twice for the same tick.
"""

import logging
import threading
import time
from typing import Any, Dict, List, Optional, Set

from jobhub import config
from jobhub.runner.cron import calculate_next_run
from jobhub.runner.db import JobStore
from jobhub.runner.executor import JobExecutor


logger = logging.getLogger("jobhub.scheduler")


class JobNotFoundError(LookupError):
    """Raised when a job does not exist or belongs to another user."""


def compute_lease_ms(poll_interval_ms: int, override_ms: Optional[int] = None) -> int:
    """Claim lease: at least two poll intervals, longer if configured."""
    return max(2 * poll_interval_ms, override_ms or 0)


class Scheduler:
    """
    Polls the job store and executes due jobs.

    Usage:
        scheduler = Scheduler(JobStore(db_path), JobExecutor(...))
        scheduler.start()
        ...
        scheduler.stop()
    """

    def __init__(
        self,
        job_store: JobStore,
        executor: JobExecutor,
        poll_interval_ms: int = config.POLL_INTERVAL_MS,
        lease_ms: int = None
    ):
        """
        Initialize the scheduler.

        Args:
            job_store: Store holding jobs and executions
            executor: Executor that runs claimed jobs
            poll_interval_ms: Time between polls
            lease_ms: Claim lease; defaults to compute_lease_ms() with the
                SCHEDULER_CLAIM_LEASE_MS override
        """
        self.job_store = job_store
        self.executor = executor
        self.poll_interval_ms = poll_interval_ms
        if lease_ms is None:
            lease_ms = compute_lease_ms(poll_interval_ms, config.get_claim_lease_override_ms())
        self.lease_ms = lease_ms

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._workers: Set[threading.Thread] = set()
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Schedule active jobs, poll once, then keep polling in the background."""
        if self._thread is not None:
            logger.warning("Scheduler already started")
            return

        logger.info(
            f"Starting scheduler (poll every {self.poll_interval_ms}ms, lease {self.lease_ms}ms)"
        )
        self._stop_event.clear()
        self._initialize_next_runs()
        self.poll()

        self._thread = threading.Thread(
            target=self._run_loop, name="jobhub-scheduler", daemon=True
        )
        self._thread.start()

    def stop(self, wait: bool = False) -> None:
        """
        Stop polling.

        Args:
            wait: Also wait for in-flight executions to finish
        """
        self._stop_event.set()

        thread, self._thread = self._thread, None
        if thread is not None:
            thread.join()
            logger.info("Scheduler stopped")

        if wait:
            self.wait_for_idle()

    def _run_loop(self) -> None:
        interval = self.poll_interval_ms / 1000
        while not self._stop_event.wait(interval):
            self.poll()

    def _initialize_next_runs(self) -> None:
        """Give active jobs without a next run (and no claim) their next run time."""
        try:
            jobs = self.job_store.get_active_jobs()
        except Exception as e:
            logger.error(f"Failed to load active jobs: {e}")
            return

        scheduled = 0
        for job in jobs:
            if job.get('next_run_at') or job.get('claimed_until'):
                continue
            try:
                next_run = calculate_next_run(job)
                if next_run is None:
                    logger.warning(f"Job {job['id']} ({job['name']}) has no next run")
                    continue
                self.job_store.update_job(job['id'], job['user_id'], {'next_run_at': next_run})
                scheduled += 1
            except Exception as e:
                logger.error(f"Failed to schedule job {job['id']}: {e}")

        logger.info(f"Loaded {len(jobs)} active jobs ({scheduled} newly scheduled)")

    def poll(self) -> List[str]:
        """
        Recover stale claims, then claim and dispatch every due job.

        Returns:
            IDs of the jobs this poll claimed
        """
        claimed: List[str] = []
        try:
            recovered = self.job_store.recover_stale_running_jobs(self.lease_ms)
            if recovered:
                logger.warning(f"Recovered {recovered} jobs with expired claims")

            for job in self.job_store.get_due_jobs():
                claimed_job = self.job_store.claim_due_job(
                    job['id'], job['user_id'], job['next_run_at'], self.lease_ms
                )
                if claimed_job is None:
                    logger.debug(f"Job {job['id']} already claimed by another poller")
                    continue

                claimed.append(job['id'])
                self._submit(claimed_job)

        except Exception as e:
            logger.error(f"Poll failed: {e}")

        if claimed:
            logger.info(f"Claimed {len(claimed)} due jobs")
        return claimed

    def _submit(self, job: Dict[str, Any]) -> None:
        worker = threading.Thread(
            target=self._execute_safely,
            args=(job,),
            name=f"jobhub-job-{job['id']}",
            daemon=True
        )
        with self._lock:
            self._workers.add(worker)
        worker.start()

    def _execute_safely(self, job: Dict[str, Any]) -> None:
        try:
            self.executor.execute_job(job, trigger_type='scheduled')
        except Exception:
            logger.exception(f"Unhandled error executing job {job.get('id')}")
        finally:
            with self._lock:
                self._workers.discard(threading.current_thread())

    def wait_for_idle(self, timeout: float = None) -> bool:
        """
        Wait for in-flight executions.

        Returns:
            True if all executions finished within the timeout
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._lock:
                pending = list(self._workers)
            if not pending:
                return True
            for worker in pending:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                worker.join(remaining)

    def trigger_job(self, job_id: str, user_id: str) -> Dict[str, Any]:
        """
        Run a job immediately, outside its schedule.

        Raises:
            JobNotFoundError: If the job does not exist for this user

        Returns:
            The job after execution
        """
        job = self.job_store.get_job(job_id, user_id)
        if not job:
            raise JobNotFoundError('Job not found')

        self.executor.execute_job(job, trigger_type='manual')
        return self.job_store.get_job(job_id, user_id)
