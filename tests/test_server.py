"""Tests for the Flask REST server."""
from __future__ import annotations

import pytest

from server.server import app, init_server_db


@pytest.fixture
def client(tmp_path):
    app.config['API_KEY'] = ''
    app.config['TESTING'] = True
    init_server_db(tmp_path / 'server.db')
    with app.test_client() as test_client:
        yield test_client


def _project(client, project_id='p1', name='Alpha', color='#112233'):
    return client.post('/api/v1/projects', json={'id': project_id, 'name': name, 'color': color})


def _entry(client, entry_id='e1', project_id='p1', date='2024-03-04', hours=1.5, **extra):
    body = {'id': entry_id, 'projectId': project_id, 'task': 'Task', 'date': date, 'hours': hours}
    body.update(extra)
    return client.post('/api/v1/entries', json=body)


class TestHealth:

    def test_health(self, client):
        response = client.get('/health')
        assert response.status_code == 200
        assert response.get_json()['data']['status'] == 'healthy'


class TestProjects:

    def test_create_and_list(self, client):
        response = _project(client)
        assert response.status_code == 201
        assert response.get_json() == {
            'success': True,
            'data': {'id': 'p1', 'name': 'Alpha', 'color': '#112233'},
            'error': None,
        }

        projects = client.get('/api/v1/projects').get_json()['data']['projects']
        assert [p['id'] for p in projects] == ['p1']

    def test_duplicate_id_conflicts(self, client):
        _project(client)
        assert _project(client).status_code == 409

    @pytest.mark.parametrize('body', [
        {'id': 'p1', 'name': 'Alpha'},
        {'id': 'p1', 'name': '', 'color': '#112233'},
        {'id': 'p1', 'name': 'Alpha', 'color': 'red'},
    ])
    def test_invalid_project_rejected(self, client, body):
        response = client.post('/api/v1/projects', json=body)
        assert response.status_code == 400
        assert response.get_json()['success'] is False

    def test_update(self, client):
        _project(client)
        response = client.put('/api/v1/projects/p1', json={'name': 'Renamed'})
        assert response.status_code == 200
        assert response.get_json()['data'] == {'id': 'p1', 'name': 'Renamed', 'color': '#112233'}

    def test_update_requires_fields(self, client):
        _project(client)
        assert client.put('/api/v1/projects/p1', json={'other': 1}).status_code == 400

    def test_update_unknown_project(self, client):
        assert client.put('/api/v1/projects/nope', json={'name': 'x'}).status_code == 404

    def test_delete_cascades_to_entries(self, client):
        _project(client, 'p1')
        _project(client, 'p2', 'Beta')
        _entry(client, 'e1', 'p1')
        _entry(client, 'e2', 'p2')

        assert client.delete('/api/v1/projects/p1').status_code == 200

        entries = client.get('/api/v1/entries').get_json()['data']['entries']
        assert [e['id'] for e in entries] == ['e2']
        assert client.delete('/api/v1/projects/p1').status_code == 404


class TestEntries:

    def test_create_requires_existing_project(self, client):
        response = _entry(client, project_id='missing')
        assert response.status_code == 400

    def test_create_round_trips_optional_times(self, client):
        _project(client)
        response = _entry(client, startTime=1000, endTime=5000)
        assert response.status_code == 201
        data = client.get('/api/v1/entries/e1').get_json()['data']
        assert data['startTime'] == 1000
        assert data['endTime'] == 5000

    def test_negative_hours_rejected(self, client):
        _project(client)
        assert _entry(client, hours=-2).status_code == 400

    def test_filters(self, client):
        _project(client, 'p1')
        _project(client, 'p2', 'Beta')
        _entry(client, 'e1', 'p1', '2024-03-01')
        _entry(client, 'e2', 'p1', '2024-03-05')
        _entry(client, 'e3', 'p2', '2024-03-06')
        _entry(client, 'e4', 'p1', '2024-03-12')

        response = client.get('/api/v1/entries?startDate=2024-03-04&endDate=2024-03-10')
        assert [e['id'] for e in response.get_json()['data']['entries']] == ['e2', 'e3']

        response = client.get('/api/v1/entries?projectId=p2')
        assert [e['id'] for e in response.get_json()['data']['entries']] == ['e3']

    def test_bad_filter_date(self, client):
        assert client.get('/api/v1/entries?startDate=March').status_code == 400

    def test_update_and_delete(self, client):
        _project(client)
        _entry(client)

        response = client.put('/api/v1/entries/e1', json={'hours': 3.25, 'task': 'Changed'})
        assert response.status_code == 200
        assert response.get_json()['data']['hours'] == 3.25
        assert response.get_json()['data']['projectId'] == 'p1'

        assert client.delete('/api/v1/entries/e1').status_code == 200
        assert client.get('/api/v1/entries/e1').status_code == 404


class TestSnapshot:

    SNAPSHOT = {
        'projects': [{'id': 'p1', 'name': 'Alpha', 'color': '#112233'}],
        'entries': [{'id': 'e1', 'projectId': 'p1', 'task': 'x', 'date': '2024-03-04', 'hours': 2.0}],
        'lastModified': 1000,
    }

    def test_missing_until_first_write(self, client):
        assert client.get('/api/v1/snapshot').status_code == 404

    def test_first_write_needs_no_version(self, client):
        response = client.put('/api/v1/snapshot', json=self.SNAPSHOT)
        assert response.status_code == 200
        version = response.get_json()['data']['version']

        data = client.get('/api/v1/snapshot').get_json()['data']
        assert data['version'] == version
        assert data['snapshot'] == self.SNAPSHOT

    def test_stale_version_rejected(self, client):
        first = client.put('/api/v1/snapshot', json=self.SNAPSHOT).get_json()['data']['version']
        changed = dict(self.SNAPSHOT, lastModified=2000)
        second = client.put('/api/v1/snapshot', json=changed, headers={'If-Match': first})
        assert second.status_code == 200

        stale = client.put('/api/v1/snapshot', json=self.SNAPSHOT, headers={'If-Match': first})
        assert stale.status_code == 412
        missing = client.put('/api/v1/snapshot', json=self.SNAPSHOT)
        assert missing.status_code == 412

    def test_crud_writes_change_version(self, client):
        version = client.put('/api/v1/snapshot', json=self.SNAPSHOT).get_json()['data']['version']
        _project(client, 'p2', 'Beta')
        assert client.get('/api/v1/snapshot').get_json()['data']['version'] != version

    def test_dangling_entry_rejected(self, client):
        body = dict(self.SNAPSHOT, projects=[])
        assert client.put('/api/v1/snapshot', json=body).status_code == 400


class TestAuth:

    def test_api_key_required_when_configured(self, client):
        app.config['API_KEY'] = 'server-secret'
        try:
            assert client.get('/api/v1/projects').status_code == 401
            assert client.get('/api/v1/projects', headers={'Authorization': 'Bearer wrong'}).status_code == 401
            response = client.get('/api/v1/projects', headers={'Authorization': 'Bearer server-secret'})
            assert response.status_code == 200
            # Health stays open for connectivity checks
            assert client.get('/health').status_code == 200
        finally:
            app.config['API_KEY'] = ''
