"""
Database operations for scheduled jobs.

Handles job definitions, execution history, and the optimistic claim that
lets several scheduler processes poll the same database.
"""

import sqlite3
import json
import uuid
from pathlib import Path
from datetime import datetime, timedelta
from typing import Dict, List, Any, Optional
from contextlib import contextmanager

from jobhub import config


# Default database path
DEFAULT_DB_PATH = config.DEFAULT_DB_PATH

# Seconds a connection waits on a locked database before giving up
BUSY_TIMEOUT_SECONDS = 30

JOB_JSON_FIELDS = ('action_config',)
EXECUTION_JSON_FIELDS = ('result',)

JOB_UPDATE_FIELDS = {
    'name', 'description', 'status', 'job_type', 'execute_at',
    'interval_seconds', 'cron_expression', 'action_type', 'action_config',
    'last_run_at', 'next_run_at', 'run_count', 'last_error', 'claimed_until',
}

EXECUTION_UPDATE_FIELDS = {
    'status', 'completed_at', 'duration_ms', 'result', 'error',
}


def format_timestamp(value: Any) -> Optional[str]:
    """Format a datetime (or ISO string) the way timestamps are stored."""
    if value is None or value == '':
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is not None:
        # Stored timestamps are naive local time
        value = value.astimezone().replace(tzinfo=None)
    return value.isoformat(timespec='seconds')


def _now() -> str:
    return format_timestamp(datetime.now())


@contextmanager
def get_db_connection(db_path: Path = None):
    """
    Context manager for database connections.

    Args:
        db_path: Path to the database file

    Yields:
        sqlite3 connection with row factory set to dict
    """
    path = Path(db_path or DEFAULT_DB_PATH)
    path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(path), timeout=BUSY_TIMEOUT_SECONDS)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


def _decode(row: sqlite3.Row, json_fields) -> Dict[str, Any]:
    record = dict(row)
    for key in json_fields:
        if record.get(key):
            record[key] = json.loads(record[key])
        elif key in record:
            record[key] = {}
    return record


def _encode(fields: Dict[str, Any], json_fields) -> Dict[str, Any]:
    """Serialize JSON columns and timestamps for storage."""
    encoded = {}
    for key, value in fields.items():
        if key in json_fields:
            encoded[key] = json.dumps(value if value is not None else {}, default=str)
        elif isinstance(value, datetime):
            encoded[key] = format_timestamp(value)
        else:
            encoded[key] = value
    return encoded


class JobStore:
    """
    sqlite-backed store for scheduled jobs and their executions.

    Every method opens its own connection, so a store can be shared between
    the poll thread and executor threads.

    Usage:
        store = JobStore(Path('data/jobs.db'))
        store.init_database()
        due = store.get_due_jobs()
    """

    def __init__(self, db_path: Path = None):
        """
        Initialize the store.

        Args:
            db_path: Path to the jobs database
        """
        self.db_path = Path(db_path or DEFAULT_DB_PATH)

    def init_database(self) -> None:
        """Initialize the jobs database with required tables."""
        with get_db_connection(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")

            # Job definitions table
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS scheduled_jobs (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    description TEXT DEFAULT '',
                    job_type TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'active',
                    execute_at TIMESTAMP,
                    interval_seconds INTEGER,
                    cron_expression TEXT,
                    action_type TEXT NOT NULL,
                    action_config TEXT,
                    next_run_at TIMESTAMP,
                    last_run_at TIMESTAMP,
                    run_count INTEGER NOT NULL DEFAULT 0,
                    last_error TEXT,
                    claimed_until TIMESTAMP,
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP NOT NULL
                )
            """)

            # Job execution history table
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS job_executions (
                    id TEXT PRIMARY KEY,
                    job_id TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'running',
                    trigger_type TEXT DEFAULT 'scheduled',
                    started_at TIMESTAMP NOT NULL,
                    completed_at TIMESTAMP,
                    duration_ms INTEGER,
                    result TEXT,
                    error TEXT,
                    FOREIGN KEY (job_id) REFERENCES scheduled_jobs(id)
                )
            """)

            # Create indexes
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_jobs_user ON scheduled_jobs(user_id)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_jobs_due ON scheduled_jobs(status, next_run_at)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_executions_job ON job_executions(job_id)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_executions_status ON job_executions(status)")

            conn.commit()

    # --- Job CRUD Operations ---

    def create_job(self, user_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Create a new job owned by user_id."""
        job_id = fields.get('id') or uuid.uuid4().hex
        now = _now()
        record = _encode({
            'id': job_id,
            'user_id': user_id,
            'name': fields['name'],
            'description': fields.get('description') or '',
            'job_type': fields['job_type'],
            'status': fields.get('status') or 'active',
            'execute_at': format_timestamp(fields.get('execute_at')),
            'interval_seconds': fields.get('interval_seconds'),
            'cron_expression': fields.get('cron_expression'),
            'action_type': fields['action_type'],
            'action_config': fields.get('action_config') or {},
            'next_run_at': format_timestamp(fields.get('next_run_at')),
            'created_at': now,
            'updated_at': now,
        }, JOB_JSON_FIELDS)

        columns = ", ".join(record)
        placeholders = ", ".join("?" for _ in record)
        with get_db_connection(self.db_path) as conn:
            conn.execute(
                f"INSERT INTO scheduled_jobs ({columns}) VALUES ({placeholders})",
                list(record.values())
            )
            conn.commit()

        return self.get_job(job_id, user_id)

    def get_job(self, job_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        """Get a single job, only if it belongs to user_id."""
        with get_db_connection(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM scheduled_jobs WHERE id = ? AND user_id = ?",
                (job_id, user_id)
            ).fetchone()
            return _decode(row, JOB_JSON_FIELDS) if row else None

    def get_user_jobs(
        self,
        user_id: str,
        status: str = None,
        limit: int = None
    ) -> List[Dict[str, Any]]:
        """Get a user's jobs, newest first."""
        query = "SELECT * FROM scheduled_jobs WHERE user_id = ?"
        params: List[Any] = [user_id]
        if status:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY created_at DESC, rowid DESC"
        if limit:
            query += " LIMIT ?"
            params.append(int(limit))

        with get_db_connection(self.db_path) as conn:
            rows = conn.execute(query, params).fetchall()
            return [_decode(row, JOB_JSON_FIELDS) for row in rows]

    def update_job(self, job_id: str, user_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Update a job's fields. Unknown fields are ignored."""
        fields = {k: v for k, v in updates.items() if k in JOB_UPDATE_FIELDS}
        if not fields:
            return self.get_job(job_id, user_id)

        fields = _encode(fields, JOB_JSON_FIELDS)
        set_clause = ", ".join(f"{k} = ?" for k in fields)
        values = list(fields.values())

        with get_db_connection(self.db_path) as conn:
            conn.execute(
                f"UPDATE scheduled_jobs SET {set_clause}, updated_at = ? WHERE id = ? AND user_id = ?",
                values + [_now(), job_id, user_id]
            )
            conn.commit()

        return self.get_job(job_id, user_id)

    def record_job_run(self, job_id: str, user_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Apply post-run updates and count the run.

        run_count is incremented in SQL so overlapping runs of the same job
        are all counted; any run_count in updates is ignored.
        """
        fields = {
            k: v for k, v in updates.items()
            if k in JOB_UPDATE_FIELDS and k != 'run_count'
        }
        fields = _encode(fields, JOB_JSON_FIELDS)
        set_clause = "".join(f"{k} = ?, " for k in fields)

        with get_db_connection(self.db_path) as conn:
            conn.execute(
                f"UPDATE scheduled_jobs SET {set_clause}run_count = run_count + 1, updated_at = ? "
                "WHERE id = ? AND user_id = ?",
                list(fields.values()) + [_now(), job_id, user_id]
            )
            conn.commit()

        return self.get_job(job_id, user_id)

    def delete_job(self, job_id: str, user_id: str) -> bool:
        """Delete a job and its execution history."""
        with get_db_connection(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(
                "DELETE FROM job_executions WHERE job_id = ? AND user_id = ?",
                (job_id, user_id)
            )
            cursor.execute(
                "DELETE FROM scheduled_jobs WHERE id = ? AND user_id = ?",
                (job_id, user_id)
            )
            conn.commit()
            return cursor.rowcount > 0

    # --- Scheduler Helpers ---

    def get_active_jobs(self) -> List[Dict[str, Any]]:
        """Get all active jobs for scheduling on startup."""
        with get_db_connection(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM scheduled_jobs WHERE status = 'active' ORDER BY next_run_at"
            ).fetchall()
            return [_decode(row, JOB_JSON_FIELDS) for row in rows]

    def get_due_jobs(self, now: datetime = None) -> List[Dict[str, Any]]:
        """Get active jobs whose next_run_at is at or before now."""
        with get_db_connection(self.db_path) as conn:
            rows = conn.execute("""
                SELECT * FROM scheduled_jobs
                WHERE status = 'active'
                AND next_run_at IS NOT NULL
                AND next_run_at <= ?
                ORDER BY next_run_at ASC
            """, (format_timestamp(now or datetime.now()),)).fetchall()
            return [_decode(row, JOB_JSON_FIELDS) for row in rows]

    def claim_due_job(
        self,
        job_id: str,
        user_id: str,
        expected_next_run_at: Any,
        lease_ms: int
    ) -> Optional[Dict[str, Any]]:
        """
        Atomically claim a due job for execution.

        The update only applies while next_run_at still holds the value the
        caller read, so of several pollers racing for the same job exactly one
        wins. The claimed row gets next_run_at = NULL (no longer due) and a
        claimed_until lease; the executor writes the real next run when it
        finishes.

        Args:
            job_id: Job to claim
            user_id: Owner of the job
            expected_next_run_at: next_run_at as read by get_due_jobs
            lease_ms: How long the claim is valid before recovery may reset it

        Returns:
            The claimed job, or None if another poller got there first
        """
        expected = format_timestamp(expected_next_run_at)
        if expected is None:
            return None

        now = datetime.now()
        claimed_until = format_timestamp(now + timedelta(milliseconds=lease_ms))

        with get_db_connection(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("""
                UPDATE scheduled_jobs SET
                    next_run_at = NULL,
                    claimed_until = ?,
                    updated_at = ?
                WHERE id = ?
                AND user_id = ?
                AND status = 'active'
                AND next_run_at = ?
            """, (claimed_until, format_timestamp(now), job_id, user_id, expected))
            conn.commit()
            claimed = cursor.rowcount == 1

        if not claimed:
            return None
        return self.get_job(job_id, user_id)

    def recover_stale_running_jobs(self, lease_ms: int) -> int:
        """
        Reset work left behind by a poller that died mid-execution.

        Executions still 'running' after the lease window are marked failed,
        and active jobs whose claim lease has expired get next_run_at = now so
        the next poll picks them up again.

        Args:
            lease_ms: Claim lease duration

        Returns:
            Number of jobs made due again
        """
        now = datetime.now()
        now_str = format_timestamp(now)
        cutoff = format_timestamp(now - timedelta(milliseconds=lease_ms))

        with get_db_connection(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("""
                UPDATE job_executions SET
                    status = 'failed',
                    completed_at = ?,
                    error = 'Execution lease expired'
                WHERE status = 'running'
                AND started_at < ?
            """, (now_str, cutoff))

            cursor.execute("""
                UPDATE scheduled_jobs SET
                    next_run_at = ?,
                    claimed_until = NULL,
                    updated_at = ?
                WHERE status = 'active'
                AND claimed_until IS NOT NULL
                AND claimed_until < ?
            """, (now_str, now_str, now_str))
            recovered = cursor.rowcount
            conn.commit()
            return recovered

    # --- Execution History Operations ---

    def add_job_execution(self, job_id: str, user_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Create a new execution record."""
        execution_id = uuid.uuid4().hex
        record = _encode({
            'id': execution_id,
            'job_id': job_id,
            'user_id': user_id,
            'status': fields.get('status') or 'running',
            'trigger_type': fields.get('trigger_type') or 'scheduled',
            'started_at': format_timestamp(fields.get('started_at') or datetime.now()),
            'completed_at': format_timestamp(fields.get('completed_at')),
            'duration_ms': fields.get('duration_ms'),
            'result': fields.get('result') or {},
            'error': fields.get('error'),
        }, EXECUTION_JSON_FIELDS)

        columns = ", ".join(record)
        placeholders = ", ".join("?" for _ in record)
        with get_db_connection(self.db_path) as conn:
            conn.execute(
                f"INSERT INTO job_executions ({columns}) VALUES ({placeholders})",
                list(record.values())
            )
            conn.commit()

        return self.get_execution(execution_id)

    def update_job_execution(self, execution_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Update an execution record's fields."""
        fields = {k: v for k, v in updates.items() if k in EXECUTION_UPDATE_FIELDS}
        if fields:
            fields = _encode(fields, EXECUTION_JSON_FIELDS)
            set_clause = ", ".join(f"{k} = ?" for k in fields)
            with get_db_connection(self.db_path) as conn:
                conn.execute(
                    f"UPDATE job_executions SET {set_clause} WHERE id = ?",
                    list(fields.values()) + [execution_id]
                )
                conn.commit()

        return self.get_execution(execution_id)

    def get_execution(self, execution_id: str) -> Optional[Dict[str, Any]]:
        """Get a single execution by ID."""
        with get_db_connection(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM job_executions WHERE id = ?", (execution_id,)
            ).fetchone()
            return _decode(row, EXECUTION_JSON_FIELDS) if row else None

    def get_job_executions(self, job_id: str, user_id: str, limit: int = None) -> List[Dict[str, Any]]:
        """Get recent executions for a job, newest first."""
        query = """
            SELECT * FROM job_executions
            WHERE job_id = ? AND user_id = ?
            ORDER BY started_at DESC, rowid DESC
        """
        params: List[Any] = [job_id, user_id]
        if limit:
            query += " LIMIT ?"
            params.append(int(limit))

        with get_db_connection(self.db_path) as conn:
            rows = conn.execute(query, params).fetchall()
            return [_decode(row, EXECUTION_JSON_FIELDS) for row in rows]
