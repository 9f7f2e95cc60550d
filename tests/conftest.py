"""
Pytest configuration and shared fixtures for JobHub unit tests.
"""

import os
import sys
from datetime import datetime, timedelta
from typing import Any, Dict

import pytest

# Add project root to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from jobhub.runner.db import JobStore
from jobhub.runner.reports import ReportStore


USER_ID = 'user-1'


@pytest.fixture
def db_path(tmp_path):
    """Path to a fresh sqlite database"""
    return tmp_path / 'jobs.db'


@pytest.fixture
def job_store(db_path) -> JobStore:
    """Initialized JobStore"""
    store = JobStore(db_path)
    store.init_database()
    return store


@pytest.fixture
def report_store(db_path) -> ReportStore:
    """Initialized ReportStore sharing the job database"""
    store = ReportStore(db_path)
    store.init_database()
    return store


@pytest.fixture
def make_job(job_store):
    """Factory creating jobs in the store; defaults to a due recurring job"""
    def _make_job(**overrides) -> Dict[str, Any]:
        user_id = overrides.pop('user_id', USER_ID)
        fields = {
            'name': 'Test job',
            'job_type': 'recurring',
            'interval_seconds': 3600,
            'action_type': 'noop',
            'action_config': {},
            'next_run_at': datetime.now() - timedelta(minutes=1),
        }
        fields.update(overrides)
        return job_store.create_job(user_id, fields)
    return _make_job


@pytest.fixture(autouse=True)
def no_webhook_allowlist(monkeypatch):
    """Keep a developer's WEBHOOK_ALLOWED_HOSTS from leaking into tests"""
    monkeypatch.delenv('WEBHOOK_ALLOWED_HOSTS', raising=False)
    monkeypatch.delenv('SCHEDULER_CLAIM_LEASE_MS', raising=False)
