"""
Configuration for JobHub.

Values come from the environment, with a project-level .env file loaded first.
"""

import os
import logging
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).parent.parent
load_dotenv(PROJECT_ROOT / '.env')

logger = logging.getLogger("jobhub.config")

# Scheduler polling cadence (not configurable)
POLL_INTERVAL_MS = 60_000

DEFAULT_DB_PATH = Path(
    os.getenv('JOBHUB_DB_PATH', str(PROJECT_ROOT / 'data' / 'databases' / 'jobs.db'))
)

DEFAULT_CHAT_MODEL = os.getenv('JOBHUB_CHAT_MODEL', 'claude-sonnet-4-20250514')

DASHBOARD_PORT = int(os.getenv('DASHBOARD_PORT', '3003'))
DASHBOARD_SECRET_KEY = os.getenv('DASHBOARD_SECRET_KEY', 'dev-secret-key-change-in-production')

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def get_claim_lease_override_ms() -> Optional[int]:
    """Claim lease override from SCHEDULER_CLAIM_LEASE_MS, or None if unset/invalid."""
    raw = os.getenv('SCHEDULER_CLAIM_LEASE_MS')
    if not raw:
        return None
    try:
        value = int(raw.strip())
    except ValueError:
        logger.warning(f"Ignoring invalid SCHEDULER_CLAIM_LEASE_MS: {raw!r}")
        return None
    if value <= 0:
        logger.warning(f"Ignoring non-positive SCHEDULER_CLAIM_LEASE_MS: {raw!r}")
        return None
    return value


def get_webhook_allowed_hosts() -> List[str]:
    """Host patterns from WEBHOOK_ALLOWED_HOSTS (comma-separated, '*.domain' allowed)."""
    raw = os.getenv('WEBHOOK_ALLOWED_HOSTS', '')
    return [h.strip().lower() for h in raw.split(',') if h.strip()]


def get_anthropic_api_key() -> Optional[str]:
    """Anthropic API key for the Claude provider."""
    return os.getenv('ANTHROPIC_API_KEY')
