"""
JobHub Dashboard

Flask API for managing scheduled jobs. The scheduler runs in the same
process when started through main().

Run:
    python -m dashboard.server

Then visit http://localhost:3003/api/jobs
"""

import logging
import threading
from pathlib import Path

from flask import Flask, jsonify, request

from jobhub import config
from jobhub.providers import get_provider
from jobhub.runner.cron import calculate_next_run
from jobhub.runner.db import JobStore
from jobhub.runner.definitions import build_job_fields, schedule_changed
from jobhub.runner.executor import JobExecutor
from jobhub.runner.reports import ReportStore
from jobhub.runner.scheduler import JobNotFoundError, Scheduler
from dashboard.auth import get_current_user, get_current_user_id, logout_user, requires_api_auth


logger = logging.getLogger('jobhub.dashboard')

DEFAULT_EXECUTIONS_LIMIT = 10

app = Flask(__name__)

# Flask secret key for sessions (required for login)
app.secret_key = config.DASHBOARD_SECRET_KEY
app.config['JOBHUB_DB_PATH'] = config.DEFAULT_DB_PATH

_initialized_paths = set()
_init_lock = threading.Lock()


def _db_path() -> Path:
    return Path(app.config['JOBHUB_DB_PATH'])


def get_job_store() -> JobStore:
    """JobStore for the configured database, creating tables on first use."""
    path = _db_path()
    with _init_lock:
        if path not in _initialized_paths:
            JobStore(path).init_database()
            ReportStore(path).init_database()
            _initialized_paths.add(path)
    return JobStore(path)


def build_scheduler() -> Scheduler:
    """Scheduler wired to the configured database."""
    job_store = get_job_store()
    executor = JobExecutor(job_store, ReportStore(_db_path()), get_provider)
    return Scheduler(job_store, executor)


# ============================================
# Auth API
# ============================================

@app.route('/api/auth/me')
def api_auth_me():
    """Get current authenticated user info"""
    user = get_current_user()
    if not user:
        return jsonify({'error': 'Not authenticated'}), 401

    return jsonify({
        'uid': user.get('uid'),
        'email': user.get('email'),
        'name': user.get('name'),
        'role': user.get('role'),
    })


@app.route('/api/auth/logout', methods=['POST'])
def api_auth_logout():
    """Logout current user"""
    logout_user()
    return jsonify({'success': True})


# ============================================
# Scheduled Jobs API
# ============================================

@app.route('/api/jobs')
@requires_api_auth
def api_jobs():
    """List the current user's jobs."""
    try:
        limit = request.args.get('limit', type=int)
        status = request.args.get('status')
        jobs = get_job_store().get_user_jobs(get_current_user_id(), status=status, limit=limit)
        return jsonify({'jobs': jobs})
    except Exception as e:
        logger.error(f"List jobs failed: {e}")
        return jsonify({'error': str(e)}), 500


@app.route('/api/jobs', methods=['POST'])
@requires_api_auth
def api_create_job():
    """Create a job and schedule its first run."""
    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'No data provided'}), 400

    try:
        fields = build_job_fields(data)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    try:
        fields['next_run_at'] = calculate_next_run(fields)
        job = get_job_store().create_job(get_current_user_id(), fields)
        logger.info(f"Created job {job['id']} ({job['name']})")
        return jsonify(job), 201
    except Exception as e:
        logger.error(f"Create job failed: {e}")
        return jsonify({'error': str(e)}), 500


@app.route('/api/jobs/<job_id>')
@requires_api_auth
def api_job(job_id):
    """Get a single job by ID."""
    try:
        job = get_job_store().get_job(job_id, get_current_user_id())
        if not job:
            return jsonify({'error': 'Job not found'}), 404
        return jsonify(job)
    except Exception as e:
        return jsonify({'error': str(e)}), 500


@app.route('/api/jobs/<job_id>', methods=['PATCH'])
@requires_api_auth
def api_update_job(job_id):
    """Update a job; schedule changes recompute next_run_at."""
    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'No data provided'}), 400

    store = get_job_store()
    user_id = get_current_user_id()
    try:
        current = store.get_job(job_id, user_id)
        if not current:
            return jsonify({'error': 'Job not found'}), 404

        try:
            fields = build_job_fields(data, partial=True, current=current)
        except ValueError as e:
            return jsonify({'error': str(e)}), 400

        if schedule_changed(fields):
            merged = dict(current, **fields)
            if merged.get('status') == 'active':
                fields['next_run_at'] = calculate_next_run(merged)
            else:
                fields['next_run_at'] = None

        job = store.update_job(job_id, user_id, fields)
        return jsonify(job)
    except Exception as e:
        logger.error(f"Update job {job_id} failed: {e}")
        return jsonify({'error': str(e)}), 500


@app.route('/api/jobs/<job_id>', methods=['DELETE'])
@requires_api_auth
def api_delete_job(job_id):
    """Delete a job and its history."""
    try:
        if not get_job_store().delete_job(job_id, get_current_user_id()):
            return jsonify({'error': 'Job not found'}), 404
        return jsonify({'success': True})
    except Exception as e:
        return jsonify({'error': str(e)}), 500


@app.route('/api/jobs/<job_id>/executions')
@requires_api_auth
def api_job_executions(job_id):
    """Get execution history for a job."""
    try:
        limit = request.args.get('limit', type=int) or DEFAULT_EXECUTIONS_LIMIT
        executions = get_job_store().get_job_executions(job_id, get_current_user_id(), limit=limit)
        return jsonify({'executions': executions})
    except Exception as e:
        return jsonify({'error': str(e)}), 500


@app.route('/api/jobs/<job_id>/run', methods=['POST'])
@requires_api_auth
def api_run_job(job_id):
    """Manually trigger a job and return it after the run."""
    try:
        job = build_scheduler().trigger_job(job_id, get_current_user_id())
        return jsonify(job)
    except JobNotFoundError as e:
        return jsonify({'error': str(e)}), 404
    except Exception as e:
        logger.error(f"Run job {job_id} failed: {e}")
        return jsonify({'error': str(e)}), 500


def main():
    """Run the dashboard server with the scheduler"""
    logging.basicConfig(level=logging.INFO, format=config.LOG_FORMAT)

    scheduler = build_scheduler()
    scheduler.start()

    print("Starting JobHub Dashboard...")
    print(f"Visit http://localhost:{config.DASHBOARD_PORT}")
    try:
        app.run(host='0.0.0.0', port=config.DASHBOARD_PORT, debug=False)
    finally:
        scheduler.stop()


if __name__ == '__main__':
    main()
