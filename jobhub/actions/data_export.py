"""
Data Export Action

Exports a year of report data as JSON or CSV and stores it on the
execution result.

Config:
    source: messages (alias chats) or providers (alias provider_usage)
    format: json or csv (default json)
"""

import csv
import io
import json
from typing import Any, Dict, List

from jobhub.actions.base import ActionError, BaseAction


EXPORT_DAYS = 365

SOURCE_ALIASES = {
    'messages': 'messages',
    'chats': 'messages',
    'providers': 'providers',
    'provider_usage': 'providers',
}

CONTENT_TYPES = {
    'json': 'application/json',
    'csv': 'text/csv',
}


def to_csv(rows: List[Dict[str, Any]]) -> str:
    """
    Render rows as CSV.

    The header is the union of all row keys in first-seen order; rows missing
    a key get an empty cell. Rows are joined with '\\n' and there is no
    trailing newline.
    """
    headers: List[str] = []
    for row in rows:
        for key in row:
            if key not in headers:
                headers.append(key)

    output = io.StringIO()
    writer = csv.DictWriter(output, fieldnames=headers, restval='', lineterminator='\n')
    writer.writeheader()
    writer.writerows(rows)
    data = output.getvalue()
    return data[:-1] if data.endswith('\n') else data


class DataExportAction(BaseAction):
    """Export report data on a schedule."""

    name = "data_export"
    description = "Export message or provider usage data"

    def validate_config(self) -> None:
        source = self.get_config_value('source', 'messages')
        if source not in SOURCE_ALIASES:
            raise ActionError(f"Unsupported export source: {source}")
        export_format = self.get_config_value('format', 'json')
        if export_format not in CONTENT_TYPES:
            raise ActionError(f"Unsupported export format: {export_format}")
        if self.report_store is None:
            raise ActionError("Report store is not configured")

    def run(self) -> Dict[str, Any]:
        source = SOURCE_ALIASES[self.get_config_value('source', 'messages')]
        export_format = self.get_config_value('format', 'json')
        user_id = self.job['user_id']

        if source == 'messages':
            rows = self.report_store.get_daily_messages(user_id, EXPORT_DAYS)
        else:
            rows = self.report_store.get_provider_usage(user_id, EXPORT_DAYS)

        if export_format == 'csv':
            data = to_csv(rows)
        else:
            data = json.dumps(rows, default=str)

        return {
            'format': export_format,
            'rowCount': len(rows),
            'source': source,
            'data': data,
            'contentType': CONTENT_TYPES[export_format],
        }
