"""
JobHub - scheduled jobs for chat workspaces.

- runner/: cron parsing, job store, executor and the polling scheduler
- actions/: the action handlers a job can run
- providers/: AI providers used by chat_message jobs
"""

__version__ = "1.0.0"
