"""Unit Tests for the Polling Scheduler"""
import pytest
import sqlite3
import sys
import threading
import os
import time
from datetime import datetime, timedelta
from unittest.mock import MagicMock

# Add project root to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from jobhub.runner.db import format_timestamp
from jobhub.runner.executor import JobExecutor
from jobhub.runner.scheduler import JobNotFoundError, Scheduler, compute_lease_ms


USER_ID = 'user-1'


@pytest.fixture
def scheduler(job_store, report_store):
    scheduler = Scheduler(job_store, JobExecutor(job_store, report_store), poll_interval_ms=50)
    yield scheduler
    scheduler.stop(wait=True)


class TestLease:
    """Test claim lease sizing"""

    def test_default_is_two_poll_intervals(self):
        assert compute_lease_ms(60000) == 120000

    def test_override_can_only_extend(self):
        assert compute_lease_ms(60000, 300000) == 300000
        assert compute_lease_ms(60000, 1000) == 120000

    def test_scheduler_reads_environment_override(self, job_store, monkeypatch):
        monkeypatch.setenv('SCHEDULER_CLAIM_LEASE_MS', '600000')
        scheduler = Scheduler(job_store, MagicMock(), poll_interval_ms=60000)
        assert scheduler.lease_ms == 600000

    def test_invalid_environment_override_ignored(self, job_store, monkeypatch):
        monkeypatch.setenv('SCHEDULER_CLAIM_LEASE_MS', 'soon')
        scheduler = Scheduler(job_store, MagicMock(), poll_interval_ms=60000)
        assert scheduler.lease_ms == 120000


class TestPoll:
    """Test a single poll"""

    def test_claims_and_executes_due_jobs(self, scheduler, make_job, job_store):
        due = make_job(interval_seconds=600)
        make_job(next_run_at=datetime.now() + timedelta(hours=1))

        assert scheduler.poll() == [due['id']]
        assert scheduler.wait_for_idle(timeout=10)

        updated = job_store.get_job(due['id'], USER_ID)
        assert updated['run_count'] == 1
        assert updated['claimed_until'] is None
        assert updated['next_run_at'] > format_timestamp(datetime.now())
        executions = job_store.get_job_executions(due['id'], USER_ID)
        assert len(executions) == 1
        assert executions[0]['trigger_type'] == 'scheduled'

    def test_nothing_due(self, scheduler, make_job):
        make_job(next_run_at=datetime.now() + timedelta(hours=1))
        assert scheduler.poll() == []

    def test_two_schedulers_run_a_job_once(self, job_store, report_store, make_job):
        """Pollers sharing a store never both claim the same tick"""
        job = make_job()
        first = Scheduler(job_store, JobExecutor(job_store, report_store), poll_interval_ms=60000)
        second = Scheduler(job_store, JobExecutor(job_store, report_store), poll_interval_ms=60000)
        try:
            claimed = first.poll() + second.poll()
            first.wait_for_idle(timeout=10)
            second.wait_for_idle(timeout=10)
        finally:
            first.stop(wait=True)
            second.stop(wait=True)

        assert claimed == [job['id']]
        assert job_store.get_job(job['id'], USER_ID)['run_count'] == 1

    def test_lost_claim_is_skipped(self, make_job, job_store):
        job = make_job()
        store = MagicMock(wraps=job_store)
        store.claim_due_job.return_value = None
        executor = MagicMock()

        assert Scheduler(store, executor, poll_interval_ms=60000).poll() == []
        executor.execute_job.assert_not_called()

    def test_store_errors_are_swallowed(self):
        store = MagicMock()
        store.recover_stale_running_jobs.return_value = 0
        store.get_due_jobs.side_effect = sqlite3.OperationalError('unable to open database file')

        assert Scheduler(store, MagicMock(), poll_interval_ms=60000).poll() == []

    def test_executor_errors_do_not_escape(self, make_job, job_store):
        make_job()
        executor = MagicMock()
        executor.execute_job.side_effect = RuntimeError('boom')
        scheduler = Scheduler(job_store, executor, poll_interval_ms=60000)
        try:
            assert len(scheduler.poll()) == 1
            assert scheduler.wait_for_idle(timeout=10)
        finally:
            scheduler.stop(wait=True)
        executor.execute_job.assert_called_once()

    def test_hung_jobs_do_not_block_others(self, make_job, job_store):
        """Each claimed job runs on its own thread"""
        for i in range(6):
            make_job(name=f'hung-{i}', next_run_at=datetime.now() - timedelta(minutes=5))
        make_job(name='fast')

        release = threading.Event()
        finished = []

        def execute_job(job, trigger_type='scheduled'):
            if job['name'] != 'fast':
                release.wait(10)
            finished.append(job['name'])

        executor = MagicMock()
        executor.execute_job.side_effect = execute_job
        scheduler = Scheduler(job_store, executor, poll_interval_ms=60000)
        try:
            assert len(scheduler.poll()) == 7

            deadline = time.time() + 5
            while 'fast' not in finished and time.time() < deadline:
                time.sleep(0.01)
            assert finished == ['fast']
            assert scheduler.wait_for_idle(timeout=0.1) is False
        finally:
            release.set()
            scheduler.stop(wait=True)

        assert len(finished) == 7

    def test_orphaned_claim_recovered_and_rerun(self, scheduler, make_job, job_store):
        job = make_job()
        job_store.update_job(job['id'], USER_ID, {
            'next_run_at': None,
            'claimed_until': datetime.now() - timedelta(minutes=5),
        })

        assert scheduler.poll() == [job['id']]
        assert scheduler.wait_for_idle(timeout=10)
        assert job_store.get_job(job['id'], USER_ID)['run_count'] == 1


class TestStartStop:
    """Test the background loop lifecycle"""

    def test_start_schedules_jobs_missing_next_run(self, scheduler, make_job, job_store):
        job = make_job(job_type='cron', cron_expression='0 0 1 1 *', next_run_at=None)
        scheduler.start()
        assert scheduler.running

        next_run = job_store.get_job(job['id'], USER_ID)['next_run_at']
        assert next_run is not None
        assert datetime.fromisoformat(next_run).month == 1

    def test_start_leaves_claimed_jobs_alone(self, scheduler, make_job, job_store):
        job = make_job(next_run_at=None)
        job_store.update_job(job['id'], USER_ID, {
            'claimed_until': datetime.now() + timedelta(minutes=5),
        })
        scheduler.start()
        assert job_store.get_job(job['id'], USER_ID)['next_run_at'] is None

    def test_start_polls_immediately(self, scheduler, make_job, job_store):
        job = make_job()
        scheduler.start()
        assert scheduler.wait_for_idle(timeout=10)
        assert job_store.get_job(job['id'], USER_ID)['run_count'] == 1

    def test_loop_picks_up_jobs_that_become_due(self, scheduler, make_job, job_store):
        scheduler.start()
        job = make_job()

        deadline = time.time() + 10
        while time.time() < deadline:
            if job_store.get_job(job['id'], USER_ID)['run_count'] == 1:
                break
            time.sleep(0.05)
        assert job_store.get_job(job['id'], USER_ID)['run_count'] == 1

    def test_double_start_is_noop(self, scheduler):
        scheduler.start()
        thread = scheduler._thread
        scheduler.start()
        assert scheduler._thread is thread

    def test_stop_is_idempotent(self, scheduler):
        scheduler.start()
        scheduler.stop()
        assert not scheduler.running
        scheduler.stop()
        assert not scheduler.running


class TestTriggerJob:
    """Test manual runs"""

    def test_runs_and_returns_refreshed_job(self, scheduler, make_job, job_store):
        job = make_job(next_run_at=datetime.now() + timedelta(hours=1))
        refreshed = scheduler.trigger_job(job['id'], USER_ID)

        assert refreshed['run_count'] == 1
        executions = job_store.get_job_executions(job['id'], USER_ID)
        assert executions[0]['trigger_type'] == 'manual'

    def test_unknown_job(self, scheduler):
        with pytest.raises(JobNotFoundError, match='Job not found'):
            scheduler.trigger_job('missing', USER_ID)

    def test_other_users_job(self, scheduler, make_job):
        job = make_job()
        with pytest.raises(JobNotFoundError):
            scheduler.trigger_job(job['id'], 'user-2')
