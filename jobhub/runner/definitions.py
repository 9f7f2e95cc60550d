"""
Job definition validation.

Turns API/CLI payloads (camelCase or snake_case keys) into the field dicts
the JobStore accepts.
"""

from typing import Any, Dict

from jobhub.actions import ACTION_TYPES
from jobhub.runner.cron import validate_cron_expression
from jobhub.runner.db import format_timestamp


JOB_TYPES = ('one_time', 'recurring', 'cron')
JOB_STATUSES = ('active', 'paused', 'completed')

# Fields whose change requires recomputing next_run_at
SCHEDULE_FIELDS = ('job_type', 'execute_at', 'interval_seconds', 'cron_expression', 'status')

FIELD_ALIASES = {
    'name': 'name',
    'description': 'description',
    'status': 'status',
    'jobType': 'job_type',
    'job_type': 'job_type',
    'executeAt': 'execute_at',
    'execute_at': 'execute_at',
    'intervalSeconds': 'interval_seconds',
    'interval_seconds': 'interval_seconds',
    'cronExpression': 'cron_expression',
    'cron_expression': 'cron_expression',
    'actionType': 'action_type',
    'action_type': 'action_type',
    'actionConfig': 'action_config',
    'action_config': 'action_config',
}


def normalize_job_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Map known keys to column names, dropping anything else."""
    fields = {}
    for key, value in (payload or {}).items():
        column = FIELD_ALIASES.get(key)
        if column:
            fields[column] = value
    return fields


def build_job_fields(payload: Dict[str, Any], partial: bool = False, current: Dict[str, Any] = None) -> Dict[str, Any]:
    """
    Validate a job payload.

    Args:
        payload: Request body or CLI arguments
        partial: True for updates (only supplied fields are checked)
        current: Existing job, merged under the payload for update checks

    Returns:
        Normalized fields ready for JobStore.create_job/update_job

    Raises:
        ValueError: With a message suitable for a 400 response
    """
    fields = normalize_job_payload(payload)
    merged = dict(current or {})
    merged.update(fields)

    if not partial or 'name' in fields:
        name = merged.get('name')
        if not isinstance(name, str) or not name.strip():
            raise ValueError("name is required")
        fields['name'] = name.strip()

    if not partial or 'job_type' in fields:
        if merged.get('job_type') not in JOB_TYPES:
            raise ValueError(f"job_type must be one of: {', '.join(JOB_TYPES)}")

    if not partial or 'action_type' in fields:
        if merged.get('action_type') not in ACTION_TYPES:
            raise ValueError(f"action_type must be one of: {', '.join(ACTION_TYPES)}")

    if 'status' in fields and fields['status'] not in JOB_STATUSES:
        raise ValueError(f"status must be one of: {', '.join(JOB_STATUSES)}")

    if 'action_config' in fields:
        if fields['action_config'] is None:
            fields['action_config'] = {}
        if not isinstance(fields['action_config'], dict):
            raise ValueError("action_config must be an object")

    job_type = merged.get('job_type')
    if not partial or any(k in fields for k in ('job_type', 'execute_at', 'interval_seconds', 'cron_expression')):
        if job_type == 'one_time':
            execute_at = merged.get('execute_at')
            if not execute_at:
                raise ValueError("execute_at is required for one_time jobs")
            try:
                fields['execute_at'] = format_timestamp(execute_at)
            except (TypeError, ValueError, AttributeError):
                raise ValueError(f"Invalid execute_at: {execute_at}")

        elif job_type == 'recurring':
            interval = merged.get('interval_seconds')
            try:
                interval = int(interval)
            except (TypeError, ValueError):
                raise ValueError("interval_seconds is required for recurring jobs")
            if interval <= 0:
                raise ValueError("interval_seconds must be positive")
            fields['interval_seconds'] = interval

        elif job_type == 'cron':
            expression = merged.get('cron_expression')
            if not expression:
                raise ValueError("cron_expression is required for cron jobs")
            validate_cron_expression(expression)
            fields['cron_expression'] = expression.strip()

    return fields


def schedule_changed(fields: Dict[str, Any]) -> bool:
    """Whether an update touches anything that affects next_run_at."""
    return any(k in fields for k in SCHEDULE_FIELDS)

