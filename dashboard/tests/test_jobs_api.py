"""
Tests for the scheduled jobs API.

Run with: pytest dashboard/tests/test_jobs_api.py -v
"""

from datetime import datetime

from dashboard.server import app, get_job_store


CRON_JOB = {
    'name': 'Nightly export',
    'jobType': 'cron',
    'cronExpression': '0 2 * * *',
    'actionType': 'data_export',
    'actionConfig': {'source': 'messages', 'format': 'csv'},
}


def create_job(client, **overrides):
    payload = dict(CRON_JOB, **overrides)
    response = client.post('/api/jobs', json=payload)
    assert response.status_code == 201, response.get_json()
    return response.get_json()


class TestCreateJob:
    """Test POST /api/jobs"""

    def test_camel_case_cron_job(self, auth_client):
        job = create_job(auth_client)

        assert job['name'] == 'Nightly export'
        assert job['job_type'] == 'cron'
        assert job['user_id'] == 'user-1'
        assert job['status'] == 'active'
        assert job['action_config'] == {'source': 'messages', 'format': 'csv'}
        next_run = datetime.fromisoformat(job['next_run_at'])
        assert (next_run.hour, next_run.minute) == (2, 0)
        assert next_run > datetime.now()

    def test_snake_case_recurring_job(self, auth_client):
        response = auth_client.post('/api/jobs', json={
            'name': 'Every minute',
            'job_type': 'recurring',
            'interval_seconds': 60,
            'action_type': 'webhook',
            'action_config': {'url': 'https://hooks.example.com/x'},
        })
        assert response.status_code == 201
        assert response.get_json()['interval_seconds'] == 60

    def test_one_time_job_runs_at_execute_at(self, auth_client):
        job = create_job(
            auth_client, jobType='one_time', executeAt='2099-05-01T09:30:00', cronExpression=None
        )
        assert job['next_run_at'] == '2099-05-01T09:30:00'

    def test_invalid_cron_rejected(self, auth_client):
        response = auth_client.post('/api/jobs', json=dict(CRON_JOB, cronExpression='61 * * * *'))
        assert response.status_code == 400
        assert 'error' in response.get_json()

    def test_unknown_action_type_rejected(self, auth_client):
        response = auth_client.post('/api/jobs', json=dict(CRON_JOB, actionType='teleport'))
        assert response.status_code == 400
        assert response.get_json()['error'].startswith('action_type must be one of')

    def test_missing_name_rejected(self, auth_client):
        response = auth_client.post('/api/jobs', json=dict(CRON_JOB, name='  '))
        assert response.status_code == 400
        assert response.get_json()['error'] == 'name is required'

    def test_empty_body_rejected(self, auth_client):
        response = auth_client.post('/api/jobs', json={})
        assert response.status_code == 400
        assert response.get_json()['error'] == 'No data provided'


class TestReadJobs:
    """Test GET /api/jobs and /api/jobs/<id>"""

    def test_list_only_own_jobs(self, auth_client):
        mine = create_job(auth_client)
        get_job_store().create_job('user-2', {
            'name': 'Not mine', 'job_type': 'recurring', 'interval_seconds': 60,
            'action_type': 'webhook',
        })

        response = auth_client.get('/api/jobs')
        assert response.status_code == 200
        assert [j['id'] for j in response.get_json()['jobs']] == [mine['id']]

    def test_list_filters_by_status(self, auth_client):
        create_job(auth_client)
        create_job(auth_client, name='Paused', status='paused')

        jobs = auth_client.get('/api/jobs?status=paused').get_json()['jobs']
        assert [j['name'] for j in jobs] == ['Paused']

    def test_get_single_job(self, auth_client):
        job = create_job(auth_client)
        response = auth_client.get(f"/api/jobs/{job['id']}")
        assert response.status_code == 200
        assert response.get_json()['id'] == job['id']

    def test_unknown_job_is_404(self, auth_client):
        response = auth_client.get('/api/jobs/does-not-exist')
        assert response.status_code == 404
        assert response.get_json()['error'] == 'Job not found'

    def test_other_users_job_is_404(self, auth_client):
        other = get_job_store().create_job('user-2', {
            'name': 'Not mine', 'job_type': 'recurring', 'interval_seconds': 60,
            'action_type': 'webhook',
        })
        assert auth_client.get(f"/api/jobs/{other['id']}").status_code == 404


class TestUpdateJob:
    """Test PATCH /api/jobs/<id>"""

    def test_pause_clears_next_run(self, auth_client):
        job = create_job(auth_client)
        response = auth_client.patch(f"/api/jobs/{job['id']}", json={'status': 'paused'})

        assert response.status_code == 200
        assert response.get_json()['status'] == 'paused'
        assert response.get_json()['next_run_at'] is None

    def test_resume_recomputes_next_run(self, auth_client):
        job = create_job(auth_client)
        auth_client.patch(f"/api/jobs/{job['id']}", json={'status': 'paused'})

        resumed = auth_client.patch(f"/api/jobs/{job['id']}", json={'status': 'active'}).get_json()
        assert resumed['next_run_at'] is not None

    def test_cron_change_recomputes_next_run(self, auth_client):
        job = create_job(auth_client)
        updated = auth_client.patch(
            f"/api/jobs/{job['id']}", json={'cronExpression': '30 4 * * *'}
        ).get_json()

        assert updated['cron_expression'] == '30 4 * * *'
        next_run = datetime.fromisoformat(updated['next_run_at'])
        assert (next_run.hour, next_run.minute) == (4, 30)

    def test_rename_keeps_schedule(self, auth_client):
        job = create_job(auth_client)
        updated = auth_client.patch(f"/api/jobs/{job['id']}", json={'name': 'Renamed'}).get_json()

        assert updated['name'] == 'Renamed'
        assert updated['next_run_at'] == job['next_run_at']

    def test_invalid_cron_rejected(self, auth_client):
        job = create_job(auth_client)
        response = auth_client.patch(f"/api/jobs/{job['id']}", json={'cronExpression': '* * *'})
        assert response.status_code == 400

    def test_invalid_status_rejected(self, auth_client):
        job = create_job(auth_client)
        response = auth_client.patch(f"/api/jobs/{job['id']}", json={'status': 'sleeping'})
        assert response.status_code == 400

    def test_unknown_job_is_404(self, auth_client):
        response = auth_client.patch('/api/jobs/missing', json={'name': 'x'})
        assert response.status_code == 404


class TestDeleteJob:
    """Test DELETE /api/jobs/<id>"""

    def test_delete_then_404(self, auth_client):
        job = create_job(auth_client)

        response = auth_client.delete(f"/api/jobs/{job['id']}")
        assert response.status_code == 200
        assert response.get_json() == {'success': True}

        assert auth_client.get(f"/api/jobs/{job['id']}").status_code == 404
        assert auth_client.delete(f"/api/jobs/{job['id']}").status_code == 404


class TestRunJob:
    """Test POST /api/jobs/<id>/run and execution history"""

    def test_manual_run_records_execution(self, auth_client):
        job = create_job(auth_client, actionConfig={'source': 'messages', 'format': 'json'})

        response = auth_client.post(f"/api/jobs/{job['id']}/run")
        assert response.status_code == 200
        ran = response.get_json()
        assert ran['run_count'] == 1
        assert ran['last_error'] is None
        assert ran['last_run_at'] is not None

        executions = auth_client.get(f"/api/jobs/{job['id']}/executions").get_json()['executions']
        assert len(executions) == 1
        assert executions[0]['trigger_type'] == 'manual'
        assert executions[0]['status'] == 'success'
        assert executions[0]['result']['format'] == 'json'

    def test_failed_run_still_returns_job(self, auth_client):
        job = create_job(auth_client, actionType='report_generation', actionConfig={})

        ran = auth_client.post(f"/api/jobs/{job['id']}/run").get_json()
        assert ran['run_count'] == 1
        assert ran['last_error'] == 'reportId is required'

    def test_unknown_job_is_404(self, auth_client):
        response = auth_client.post('/api/jobs/missing/run')
        assert response.status_code == 404
        assert response.get_json()['error'] == 'Job not found'

    def test_executions_limit(self, auth_client):
        job = create_job(auth_client)
        for _ in range(3):
            auth_client.post(f"/api/jobs/{job['id']}/run")

        history = auth_client.get(f"/api/jobs/{job['id']}/executions?limit=2").get_json()
        assert len(history['executions']) == 2

    def test_server_uses_configured_database(self, auth_client, tmp_path):
        assert app.config['JOBHUB_DB_PATH'] == tmp_path / 'dashboard.db'
        create_job(auth_client)
        assert (tmp_path / 'dashboard.db').exists()
