"""
Pytest configuration and shared fixtures for dashboard tests.
"""

import pytest
import sys
from pathlib import Path
from typing import Generator

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from dashboard.server import app


TEST_USER = {
    'uid': 'user-1',
    'email': 'tester@example.com',
    'name': 'Tester',
    'role': 'user',
}


@pytest.fixture
def client(tmp_path, monkeypatch) -> Generator:
    """Test client backed by a fresh database"""
    monkeypatch.delenv('WEBHOOK_ALLOWED_HOSTS', raising=False)
    app.config['TESTING'] = True
    app.config['JOBHUB_DB_PATH'] = tmp_path / 'dashboard.db'
    with app.test_client() as client:
        yield client


@pytest.fixture
def auth_client(client):
    """Test client with TEST_USER signed in"""
    with client.session_transaction() as sess:
        sess['user'] = dict(TEST_USER)
    return client
