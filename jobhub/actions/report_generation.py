"""
Report Generation Action

Re-runs a saved report's query config and stores the fresh result on the
saved report, so the report page shows current data without a manual run.

Config:
    reportId: ID of the saved report (owned by the job's user)
"""

from typing import Any, Dict

from jobhub.actions.base import ActionError, BaseAction


class ReportGenerationAction(BaseAction):
    """Refresh a saved report on a schedule."""

    name = "report_generation"
    description = "Re-run a saved report and store the result"

    def validate_config(self) -> None:
        self.require_config('reportId')
        if self.report_store is None:
            raise ActionError("Report store is not configured")

    def run(self) -> Dict[str, Any]:
        report_id = self.config['reportId']
        user_id = self.job['user_id']

        report = self.report_store.get_saved_report(report_id, user_id)
        if not report:
            raise ActionError(f"Report not found: {report_id}")

        rows = self.report_store.execute_custom_query(user_id, report.get('report_config') or {})
        self.report_store.update_report_result(report_id, rows)

        self.logger.info(f"Report {report_id} refreshed with {len(rows)} rows")
        return {'reportId': report_id, 'rowCount': len(rows)}
