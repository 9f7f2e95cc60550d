"""
Job executor with execution recording and rescheduling.
"""

import time
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from jobhub.actions import ActionResult, get_action_class
from jobhub.runner.cron import calculate_next_run
from jobhub.runner.db import JobStore
from jobhub.runner.reports import ReportStore


logger = logging.getLogger("jobhub.executor")


class JobExecutor:
    """
    Runs a job's action and records the outcome.

    execute_job never raises: action failures become failed executions, and
    errors writing the execution or job back to the store are logged.

    Usage:
        executor = JobExecutor(JobStore(db_path), ReportStore(db_path), get_provider)
        result = executor.execute_job(job, trigger_type='manual')
    """

    def __init__(
        self,
        job_store: JobStore,
        report_store: ReportStore = None,
        provider_factory: Callable[[str], Any] = None
    ):
        """
        Initialize the executor.

        Args:
            job_store: Store holding jobs and executions
            report_store: Report data for report_generation/data_export
            provider_factory: Provider lookup for chat_message
        """
        self.job_store = job_store
        self.report_store = report_store
        self.provider_factory = provider_factory

    def execute_job(self, job: Dict[str, Any], trigger_type: str = 'scheduled') -> ActionResult:
        """
        Execute a job and record the result.

        Args:
            job: Job record (as returned by the store or a claim)
            trigger_type: 'scheduled' or 'manual'

        Returns:
            ActionResult with the execution's outcome
        """
        start_time = time.time()
        job_label = f"{job.get('id')} ({job.get('name')})"

        execution = None
        try:
            execution = self.job_store.add_job_execution(job['id'], job['user_id'], {
                'status': 'running',
                'trigger_type': trigger_type,
            })
        except Exception as e:
            logger.error(f"Failed to create execution for job {job_label}: {e}")
            result = ActionResult(success=False, error_message=str(e))
        else:
            logger.info(f"Executing job {job_label} [{trigger_type}]")
            result = self._run_action(job)

        result.duration_ms = int((time.time() - start_time) * 1000)
        if execution:
            result.execution_id = execution['id']
            self._finish_execution(execution['id'], result)

        self._update_job(job, result)

        if result.success:
            logger.info(f"Job {job_label} completed in {result.duration_ms}ms")
        else:
            logger.warning(f"Job {job_label} failed: {result.error_message}")

        return result

    def _run_action(self, job: Dict[str, Any]) -> ActionResult:
        action_type = job.get('action_type')
        action_class = get_action_class(action_type)
        if action_class is None:
            return ActionResult(success=False, error_message=f"Unknown action type: {action_type}")

        try:
            action = action_class(
                job,
                report_store=self.report_store,
                provider_factory=self.provider_factory
            )
            return action.execute()
        except Exception as e:
            return ActionResult(success=False, error_message=f"Action setup failed: {e}")

    def _finish_execution(self, execution_id: str, result: ActionResult) -> None:
        updates = {
            'status': 'success' if result.success else 'failed',
            'completed_at': datetime.now(),
            'duration_ms': result.duration_ms,
        }
        if result.success:
            updates['result'] = result.result_data
        else:
            updates['error'] = result.error_message

        try:
            self.job_store.update_job_execution(execution_id, updates)
        except Exception as e:
            logger.error(f"Failed to update execution {execution_id}: {e}")

    def _update_job(self, job: Dict[str, Any], result: ActionResult) -> None:
        now = datetime.now()
        updates: Dict[str, Any] = {
            'last_run_at': now,
            'last_error': None if result.success else result.error_message,
            'claimed_until': None,
        }

        if job.get('job_type') == 'one_time':
            updates['status'] = 'completed'
            updates['next_run_at'] = None
        else:
            next_run = self._next_run(job, now)
            if next_run is not None:
                updates['next_run_at'] = next_run
            else:
                logger.warning(
                    f"Could not compute next run for job {job.get('id')}; next_run_at left unchanged"
                )

        try:
            self.job_store.record_job_run(job['id'], job['user_id'], updates)
        except Exception as e:
            logger.error(f"Failed to update job {job.get('id')}: {e}")

    @staticmethod
    def _next_run(job: Dict[str, Any], now: datetime) -> Optional[datetime]:
        try:
            return calculate_next_run(job, now)
        except (TypeError, ValueError) as e:
            logger.warning(f"Invalid schedule on job {job.get('id')}: {e}")
            return None
