"""Tests for shared.models module."""
from __future__ import annotations

import pytest

from shared.errors import ValidationError
from shared.models import (Project, Snapshot, SyncConfig, SyncState,
                           SyncStatus, TimeEntry)


def _snapshot():
    alpha = Project(id='p1', name='Alpha', color='#112233')
    beta = Project(id='p2', name='Beta', color='#445566')
    entries = [
        TimeEntry(id='e1', project_id='p1', task='a', date='2024-03-04', hours=1.0),
        TimeEntry(id='e2', project_id='p2', task='b', date='2024-03-04', hours=2.0),
        TimeEntry(id='e3', project_id='p1', task='c', date='2024-03-05', hours=0.5),
    ]
    return Snapshot(projects=[alpha, beta], entries=entries, last_modified=1000)


class TestProject:

    def test_create_assigns_fresh_id(self):
        first = Project.create('Client work', '#3b82f6')
        second = Project.create('Client work', '#3b82f6')
        assert first.id != second.id
        assert first.name == 'Client work'

    def test_create_strips_name(self):
        assert Project.create('  Padded  ', '#000000').name == 'Padded'

    @pytest.mark.parametrize('name,color', [
        ('', '#000000'),
        ('   ', '#000000'),
        ('Name', 'blue'),
        ('Name', '#12345'),
        ('Name', None),
    ])
    def test_create_rejects_invalid_input(self, name, color):
        with pytest.raises(ValidationError):
            Project.create(name, color)


class TestTimeEntry:

    def test_to_dict_uses_camel_case(self):
        entry = TimeEntry.create('p1', 'Review', '2024-03-04', 1.5, start_time=1000, end_time=5000)
        data = entry.to_dict()
        assert data['projectId'] == 'p1'
        assert data['startTime'] == 1000
        assert data['endTime'] == 5000
        assert 'project_id' not in data

    def test_to_dict_omits_missing_times(self):
        data = TimeEntry.create('p1', 'Review', '2024-03-04', 2).to_dict()
        assert 'startTime' not in data
        assert 'endTime' not in data
        assert data['hours'] == 2.0

    def test_from_dict_restores_entry(self):
        entry = TimeEntry.create('p1', 'Review', '2024-03-04', 1.25, start_time=10, end_time=20)
        assert TimeEntry.from_dict(entry.to_dict()) == entry

    def test_zero_hours_allowed(self):
        assert TimeEntry.create('p1', '', '2024-03-04', 0).hours == 0.0

    @pytest.mark.parametrize('kwargs', [
        dict(hours=-1),
        dict(hours=True),
        dict(hours='2'),
        dict(hours=float('nan')),
        dict(date='04/03/2024'),
        dict(date='2024-02-30'),
        dict(project_id=''),
        dict(start_time=5000, end_time=1000),
        dict(start_time=-5),
    ])
    def test_create_rejects_invalid_input(self, kwargs):
        values = dict(project_id='p1', task='t', date='2024-03-04', hours=1.0)
        values.update(kwargs)
        with pytest.raises(ValidationError):
            TimeEntry.create(**values)


class TestSnapshot:

    def test_without_project_removes_exactly_its_entries(self):
        snapshot = _snapshot()
        result = snapshot.without_project('p1')
        assert [p.id for p in result.projects] == ['p2']
        assert [e.id for e in result.entries] == ['e2']

    def test_transforms_leave_original_untouched(self):
        snapshot = _snapshot()
        snapshot.without_project('p1')
        snapshot.with_project(Project(id='p3', name='Gamma', color='#000000'))
        snapshot.without_entry('e2')
        assert len(snapshot.projects) == 2
        assert len(snapshot.entries) == 3

    def test_touched_sets_last_modified(self):
        assert _snapshot().touched(5000).last_modified == 5000

    def test_replacing_entry_keeps_order(self):
        updated = TimeEntry(id='e2', project_id='p2', task='changed', date='2024-03-04', hours=3.0)
        result = _snapshot().replacing_entry(updated)
        assert [e.id for e in result.entries] == ['e1', 'e2', 'e3']
        assert result.find_entry('e2').task == 'changed'

    def test_json_round_trip(self):
        snapshot = _snapshot()
        assert Snapshot.from_json(snapshot.to_json()) == snapshot

    def test_wire_format_keys(self):
        data = _snapshot().to_dict()
        assert set(data) == {'projects', 'entries', 'lastModified'}

    def test_content_hash_tracks_content(self):
        snapshot = _snapshot()
        assert snapshot.content_hash() == Snapshot.from_json(snapshot.to_json()).content_hash()
        assert snapshot.content_hash() != snapshot.touched(2000).content_hash()


class TestSyncStatus:

    def test_state_local_without_backend(self):
        assert SyncStatus().state is SyncState.LOCAL

    def test_state_precedence(self):
        status = SyncStatus(backend='github', is_online=False, pending=True)
        assert status.state is SyncState.OFFLINE
        status.is_online = True
        assert status.state is SyncState.PENDING
        status.last_error = 'boom'
        assert status.state is SyncState.FAILED
        status.last_error = None
        status.pending = False
        assert status.state is SyncState.SYNCED

    def test_to_dict_includes_state(self):
        assert SyncStatus(backend='rest', is_online=True).to_dict()['state'] == 'synced'


class TestSyncConfig:

    def test_defaults_are_local(self):
        config = SyncConfig()
        assert config.backend == 'local'
        assert not config.is_configured()

    def test_api_url_trailing_slash_removed(self):
        config = SyncConfig(backend='rest', api_url='http://localhost:5000/api/v1/')
        assert config.api_url == 'http://localhost:5000/api/v1'
        assert config.is_configured()

    def test_github_requires_identity(self):
        assert not SyncConfig(backend='github', github_owner='me', github_repo='data').is_configured()
        assert SyncConfig(backend='github', github_owner='me', github_repo='data',
                          github_token='t').is_configured()

    @pytest.mark.parametrize('kwargs', [
        dict(backend='dropbox'),
        dict(api_url='ftp://example.com'),
        dict(sync_interval=1),
        dict(debounce_seconds=-1),
        dict(timeout=0),
    ])
    def test_invalid_values_rejected(self, kwargs):
        with pytest.raises(ValueError):
            SyncConfig(**kwargs)
