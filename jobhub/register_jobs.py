#!/usr/bin/env python3
"""
Command-line management for scheduled jobs.

Usage:
    python -m jobhub.register_jobs init
    python -m jobhub.register_jobs add --user alice --name "Nightly export" \\
        --type cron --cron "0 2 * * *" --action data_export --config '{"format": "csv"}'
    python -m jobhub.register_jobs list --user alice
    python -m jobhub.register_jobs run <job_id> --user alice
    python -m jobhub.register_jobs poll --wait
    python -m jobhub.register_jobs serve
    python -m jobhub.register_jobs next "0 9 * * 1#2" -n 3
"""

import argparse
import json
import logging
import sys
import time
from datetime import datetime
from pathlib import Path

from jobhub import config
from jobhub.providers import get_provider
from jobhub.runner.cron import calculate_next_run, describe_cron, get_next_cron_run
from jobhub.runner.db import JobStore
from jobhub.runner.definitions import build_job_fields
from jobhub.runner.executor import JobExecutor
from jobhub.runner.reports import ReportStore
from jobhub.runner.scheduler import JobNotFoundError, Scheduler


def build_scheduler(db_path: Path) -> Scheduler:
    """Create a scheduler wired to stores at db_path."""
    job_store = JobStore(db_path)
    report_store = ReportStore(db_path)
    executor = JobExecutor(job_store, report_store, get_provider)
    return Scheduler(job_store, executor)


def cmd_init(args) -> int:
    print(f"Initializing jobs database at {args.db}...")
    JobStore(args.db).init_database()
    ReportStore(args.db).init_database()
    print("Done")
    return 0


def cmd_add(args) -> int:
    try:
        action_config = json.loads(args.config) if args.config else {}
    except json.JSONDecodeError as e:
        print(f"Invalid --config JSON: {e}", file=sys.stderr)
        return 1

    payload = {
        'name': args.name,
        'description': args.description,
        'job_type': args.type,
        'execute_at': args.at,
        'interval_seconds': args.interval,
        'cron_expression': args.cron,
        'action_type': args.action,
        'action_config': action_config,
    }
    try:
        fields = build_job_fields(payload)
    except ValueError as e:
        print(f"Invalid job: {e}", file=sys.stderr)
        return 1

    fields['next_run_at'] = calculate_next_run(fields)
    job = JobStore(args.db).create_job(args.user, fields)
    print(f"Created job: {job['name']}")
    print(f"  ID: {job['id']}")
    print(f"  Next run: {job['next_run_at'] or 'never'}")
    return 0


def cmd_list(args) -> int:
    jobs = JobStore(args.db).get_user_jobs(args.user, status=args.status)
    if not jobs:
        print("No jobs")
        return 0

    for job in jobs:
        if job['job_type'] == 'cron':
            schedule = describe_cron(job['cron_expression'])
        elif job['job_type'] == 'recurring':
            schedule = f"Every {job['interval_seconds']}s"
        else:
            schedule = f"Once at {job['execute_at']}"
        print(f"{job['id']}  [{job['status']}] {job['name']}")
        print(f"    {job['action_type']}, {schedule}; next: {job['next_run_at'] or '-'}, "
              f"runs: {job['run_count']}")
        if job['last_error']:
            print(f"    last error: {job['last_error']}")
    return 0


def cmd_run(args) -> int:
    scheduler = build_scheduler(args.db)
    try:
        job = scheduler.trigger_job(args.job_id, args.user)
    except JobNotFoundError as e:
        print(str(e), file=sys.stderr)
        return 1

    executions = JobStore(args.db).get_job_executions(args.job_id, args.user, limit=1)
    if not executions:
        print(f"Job '{job['name']}' did not record an execution", file=sys.stderr)
        return 1
    execution = executions[0]
    print(f"Job '{job['name']}' finished: {execution['status']}")
    if execution['error']:
        print(f"  Error: {execution['error']}")
    else:
        print(f"  Result: {json.dumps(execution['result'], indent=2)[:2000]}")
    return 0 if execution['status'] == 'success' else 1


def cmd_poll(args) -> int:
    scheduler = build_scheduler(args.db)
    claimed = scheduler.poll()
    print(f"Claimed {len(claimed)} due jobs")
    if args.wait:
        scheduler.wait_for_idle()
    scheduler.stop(wait=args.wait)
    return 0


def cmd_serve(args) -> int:
    scheduler = build_scheduler(args.db)
    scheduler.start()
    print("Scheduler running. Press Ctrl+C to stop.")
    try:
        while scheduler.running:
            time.sleep(1)
    except KeyboardInterrupt:
        print("\nStopping...")
    scheduler.stop(wait=True)
    return 0


def cmd_next(args) -> int:
    now = datetime.now()
    for _ in range(args.count):
        now = get_next_cron_run(args.expression, now)
        if now is None:
            print(f"No upcoming runs for '{args.expression}'")
            return 1
        print(now.strftime('%Y-%m-%d %H:%M (%a)'))
    return 0


def main(argv=None) -> int:
    """Parse arguments and dispatch to a command."""
    parser = argparse.ArgumentParser(description='Manage scheduled jobs')
    parser.add_argument('--db', type=Path, default=config.DEFAULT_DB_PATH,
                        help='Path to the jobs database')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    subparsers = parser.add_subparsers(dest='command', required=True)

    subparsers.add_parser('init', help='Create database tables')

    add = subparsers.add_parser('add', help='Create a job')
    add.add_argument('--user', required=True)
    add.add_argument('--name', required=True)
    add.add_argument('--description', default='')
    add.add_argument('--type', required=True, choices=['one_time', 'recurring', 'cron'])
    add.add_argument('--at', help='execute_at for one_time jobs (ISO-8601)')
    add.add_argument('--interval', type=int, help='interval_seconds for recurring jobs')
    add.add_argument('--cron', help='Cron expression for cron jobs')
    add.add_argument('--action', required=True)
    add.add_argument('--config', help='Action config as JSON')

    list_parser = subparsers.add_parser('list', help="List a user's jobs")
    list_parser.add_argument('--user', required=True)
    list_parser.add_argument('--status', choices=['active', 'paused', 'completed'])

    run = subparsers.add_parser('run', help='Run a job now')
    run.add_argument('job_id')
    run.add_argument('--user', required=True)

    poll = subparsers.add_parser('poll', help='Claim and run due jobs once')
    poll.add_argument('--wait', action='store_true', help='Wait for jobs to finish')

    subparsers.add_parser('serve', help='Run the scheduler until interrupted')

    next_parser = subparsers.add_parser('next', help='Preview cron run times')
    next_parser.add_argument('expression')
    next_parser.add_argument('-n', '--count', type=int, default=5)

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format=config.LOG_FORMAT
    )

    commands = {
        'init': cmd_init,
        'add': cmd_add,
        'list': cmd_list,
        'run': cmd_run,
        'poll': cmd_poll,
        'serve': cmd_serve,
        'next': cmd_next,
    }
    return commands[args.command](args)


if __name__ == '__main__':
    sys.exit(main())
