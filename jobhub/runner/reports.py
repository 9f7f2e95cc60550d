"""
Report data for report_generation and data_export jobs.

Saved reports hold a query config that is re-run on a schedule; the message
and provider usage tables are the data those queries read.
"""

import json
import uuid
from pathlib import Path
from datetime import datetime, timedelta
from typing import Dict, List, Any, Optional

from jobhub.runner.db import DEFAULT_DB_PATH, format_timestamp, get_db_connection


# Whitelisted query shapes for custom report configs: (source, groupBy) -> SQL
CUSTOM_QUERIES = {
    ('messages', 'day'): """
        SELECT date(created_at) AS day, COUNT(*) AS message_count,
               COUNT(DISTINCT chat_id) AS chat_count
        FROM messages WHERE user_id = ? AND created_at >= ?
        GROUP BY day ORDER BY day
    """,
    ('messages', 'role'): """
        SELECT role, COUNT(*) AS message_count
        FROM messages WHERE user_id = ? AND created_at >= ?
        GROUP BY role ORDER BY message_count DESC
    """,
    ('messages', 'provider'): """
        SELECT COALESCE(provider, 'unknown') AS provider, COUNT(*) AS message_count
        FROM messages WHERE user_id = ? AND created_at >= ?
        GROUP BY provider ORDER BY message_count DESC
    """,
    ('providers', 'provider'): """
        SELECT provider, COUNT(*) AS request_count,
               SUM(input_tokens) AS input_tokens, SUM(output_tokens) AS output_tokens
        FROM provider_usage WHERE user_id = ? AND created_at >= ?
        GROUP BY provider ORDER BY request_count DESC
    """,
    ('providers', 'day'): """
        SELECT date(created_at) AS day, COUNT(*) AS request_count,
               SUM(input_tokens) AS input_tokens, SUM(output_tokens) AS output_tokens
        FROM provider_usage WHERE user_id = ? AND created_at >= ?
        GROUP BY day ORDER BY day
    """,
}

DEFAULT_QUERY_DAYS = 30
DEFAULT_QUERY_LIMIT = 1000


def _since(days: int) -> str:
    return format_timestamp(datetime.now() - timedelta(days=int(days)))


class ReportStore:
    """sqlite-backed saved reports and chat usage data."""

    def __init__(self, db_path: Path = None):
        self.db_path = Path(db_path or DEFAULT_DB_PATH)

    def init_database(self) -> None:
        """Initialize report tables."""
        with get_db_connection(self.db_path) as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS saved_reports (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    description TEXT DEFAULT '',
                    report_config TEXT NOT NULL,
                    last_result TEXT,
                    last_run_at TIMESTAMP,
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS messages (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    chat_id TEXT NOT NULL,
                    role TEXT NOT NULL,
                    provider TEXT,
                    created_at TIMESTAMP NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS provider_usage (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    provider TEXT NOT NULL,
                    model TEXT,
                    input_tokens INTEGER DEFAULT 0,
                    output_tokens INTEGER DEFAULT 0,
                    created_at TIMESTAMP NOT NULL
                )
            """)

            cursor.execute("CREATE INDEX IF NOT EXISTS idx_messages_user ON messages(user_id, created_at)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_usage_user ON provider_usage(user_id, created_at)")

            conn.commit()

    # --- Report Queries ---

    def get_daily_messages(self, user_id: str, days: int = 30) -> List[Dict[str, Any]]:
        """Messages and chats per day over the last N days."""
        return self._query(CUSTOM_QUERIES[('messages', 'day')], user_id, days)

    def get_provider_usage(self, user_id: str, days: int = 30) -> List[Dict[str, Any]]:
        """Request and token counts per provider over the last N days."""
        return self._query(CUSTOM_QUERIES[('providers', 'provider')], user_id, days)

    def execute_custom_query(self, user_id: str, report_config: Dict[str, Any]) -> List[Dict[str, Any]]:
        """
        Run a saved report's query config.

        Config keys:
            source: 'messages' or 'providers' (default 'messages')
            groupBy: 'day', 'role' or 'provider' (default 'day')
            days: lookback window (default 30)
            limit: maximum rows (default 1000)

        Raises:
            ValueError: If the source/groupBy combination is not supported
        """
        report_config = report_config or {}
        source = report_config.get('source', 'messages')
        group_by = report_config.get('groupBy', 'day')
        sql = CUSTOM_QUERIES.get((source, group_by))
        if sql is None:
            raise ValueError(f"Unsupported report query: source={source!r}, groupBy={group_by!r}")

        days = int(report_config.get('days') or DEFAULT_QUERY_DAYS)
        limit = int(report_config.get('limit') or DEFAULT_QUERY_LIMIT)
        return self._query(sql, user_id, days)[:limit]

    def _query(self, sql: str, user_id: str, days: int) -> List[Dict[str, Any]]:
        with get_db_connection(self.db_path) as conn:
            rows = conn.execute(sql, (user_id, _since(days))).fetchall()
            return [dict(row) for row in rows]

    # --- Saved Reports ---

    def create_saved_report(
        self,
        user_id: str,
        name: str,
        report_config: Dict[str, Any],
        description: str = ''
    ) -> Dict[str, Any]:
        """Create a saved report."""
        report_id = uuid.uuid4().hex
        now = format_timestamp(datetime.now())
        with get_db_connection(self.db_path) as conn:
            conn.execute("""
                INSERT INTO saved_reports (
                    id, user_id, name, description, report_config, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (report_id, user_id, name, description, json.dumps(report_config), now, now))
            conn.commit()
        return self.get_saved_report(report_id, user_id)

    def get_saved_report(self, report_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        """Get a saved report, only if it belongs to user_id."""
        with get_db_connection(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM saved_reports WHERE id = ? AND user_id = ?",
                (report_id, user_id)
            ).fetchone()
        if not row:
            return None

        report = dict(row)
        report['report_config'] = json.loads(report['report_config'] or '{}')
        report['last_result'] = json.loads(report['last_result']) if report['last_result'] else None
        return report

    def get_saved_reports(self, user_id: str) -> List[Dict[str, Any]]:
        """List a user's saved reports, most recently updated first."""
        with get_db_connection(self.db_path) as conn:
            rows = conn.execute("""
                SELECT id, name, description, report_config, last_run_at, created_at, updated_at
                FROM saved_reports WHERE user_id = ?
                ORDER BY updated_at DESC
            """, (user_id,)).fetchall()
        reports = []
        for row in rows:
            report = dict(row)
            report['report_config'] = json.loads(report['report_config'] or '{}')
            reports.append(report)
        return reports

    def update_report_result(self, report_id: str, rows: List[Dict[str, Any]]) -> None:
        """Store the latest result of a saved report."""
        now = format_timestamp(datetime.now())
        with get_db_connection(self.db_path) as conn:
            conn.execute(
                "UPDATE saved_reports SET last_result = ?, last_run_at = ?, updated_at = ? WHERE id = ?",
                (json.dumps(rows, default=str), now, now, report_id)
            )
            conn.commit()

    # --- Usage Recording ---

    def record_message(
        self,
        user_id: str,
        chat_id: str,
        role: str,
        provider: str = None,
        created_at: datetime = None
    ) -> None:
        """Record a chat message for reporting."""
        with get_db_connection(self.db_path) as conn:
            conn.execute("""
                INSERT INTO messages (user_id, chat_id, role, provider, created_at)
                VALUES (?, ?, ?, ?, ?)
            """, (user_id, chat_id, role, provider, format_timestamp(created_at or datetime.now())))
            conn.commit()

    def record_provider_usage(
        self,
        user_id: str,
        provider: str,
        model: str = None,
        input_tokens: int = 0,
        output_tokens: int = 0,
        created_at: datetime = None
    ) -> None:
        """Record one provider request for reporting."""
        with get_db_connection(self.db_path) as conn:
            conn.execute("""
                INSERT INTO provider_usage (
                    user_id, provider, model, input_tokens, output_tokens, created_at
                ) VALUES (?, ?, ?, ?, ?, ?)
            """, (user_id, provider, model, input_tokens, output_tokens,
                  format_timestamp(created_at or datetime.now())))
            conn.commit()
