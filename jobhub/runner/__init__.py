"""
Job runner components for JobHub.

- cron.py: Cron expression parsing and next-run calculation
- webhooks.py: Outbound webhook URL policy
- db.py: Job and execution storage, optimistic claims
- reports.py: Saved reports and report data
- definitions.py: Job payload validation
- executor.py: Runs a job's action and records the outcome
- scheduler.py: Polling loop that claims and dispatches due jobs
"""
