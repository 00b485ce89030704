"""Tests for client.config and client.app modules."""
from __future__ import annotations

from unittest import mock

import pytest

from client.app import TimesheetApp, build_remote_client, build_strategy
from client.config import describe_config, load_config, save_setting
from client.github_client import GitHubRemoteClient
from client.rest_client import RestRemoteClient
from client.strategies import (DebouncedPushStrategy, ImmediateWriteStrategy,
                               LocalOnlyStrategy)
from shared.models import SyncConfig


class TestLoadConfig:

    def test_empty_environment_is_local(self, store):
        assert load_config(store, environ={}).backend == 'local'

    def test_rest_from_environment(self, store):
        config = load_config(store, environ={
            'TIMESHEET_API_URL': 'http://localhost:5000',
            'TIMESHEET_API_KEY': 'k',
            'TIMESHEET_SYNC_INTERVAL': '60',
            'TIMESHEET_TIMEOUT': '5',
        })
        assert config.backend == 'rest'
        assert config.sync_interval == 60
        assert config.timeout == 5

    def test_github_inferred(self, store):
        config = load_config(store, environ={
            'TIMESHEET_GITHUB_OWNER': 'me',
            'TIMESHEET_GITHUB_REPO': 'data',
            'TIMESHEET_GITHUB_TOKEN': 'tok',
            'TIMESHEET_DEBOUNCE_SECONDS': '0.5',
        })
        assert config.backend == 'github'
        assert config.debounce_seconds == 0.5
        assert config.github_branch == 'main'

    def test_incomplete_backend_falls_back_to_local(self, store):
        config = load_config(store, environ={
            'TIMESHEET_BACKEND': 'github',
            'TIMESHEET_GITHUB_OWNER': 'me',
        })
        assert config.backend == 'local'

    def test_unknown_backend_falls_back_to_local(self, store):
        assert load_config(store, environ={'TIMESHEET_BACKEND': 'dropbox'}).backend == 'local'

    def test_out_of_range_value_falls_back_to_defaults(self, store):
        config = load_config(store, environ={
            'TIMESHEET_API_URL': 'http://localhost:5000',
            'TIMESHEET_SYNC_INTERVAL': '1',
        })
        assert config == SyncConfig()

    def test_unparseable_number_ignored(self, store):
        config = load_config(store, environ={
            'TIMESHEET_API_URL': 'http://localhost:5000',
            'TIMESHEET_TIMEOUT': 'soon',
        })
        assert config.backend == 'rest'
        assert config.timeout == 10

    def test_saved_settings_used(self, store):
        save_setting(store, 'api_url', 'http://saved:5000')
        assert load_config(store, environ={}).api_url == 'http://saved:5000'

    def test_environment_overrides_saved_settings(self, store):
        save_setting(store, 'api_url', 'http://saved:5000')
        config = load_config(store, environ={'TIMESHEET_API_URL': 'http://env:5000'})
        assert config.api_url == 'http://env:5000'

    def test_reads_os_environ_by_default(self, store, monkeypatch):
        monkeypatch.setenv('TIMESHEET_API_URL', 'http://from-os:5000')
        assert load_config(store).api_url == 'http://from-os:5000'

    def test_unknown_setting_rejected(self, store):
        with pytest.raises(KeyError):
            save_setting(store, 'colour', 'blue')

    def test_describe_masks_secrets(self):
        data = describe_config(SyncConfig(backend='rest', api_url='http://x', api_key='supersecret'))
        assert data['api_key'] == 'supe...'


class TestWiring:

    def test_local_config_has_no_remote(self):
        config = SyncConfig()
        assert build_remote_client(config) is None
        assert isinstance(build_strategy(config, None), LocalOnlyStrategy)

    def test_rest_wiring(self):
        config = SyncConfig(backend='rest', api_url='http://localhost:5000')
        client = build_remote_client(config)
        assert isinstance(client, RestRemoteClient)
        assert isinstance(build_strategy(config, client), ImmediateWriteStrategy)

    def test_github_wiring(self):
        config = SyncConfig(backend='github', github_owner='me', github_repo='data',
                            github_token='tok', debounce_seconds=1.0)
        client = build_remote_client(config)
        assert isinstance(client, GitHubRemoteClient)
        strategy = build_strategy(config, client)
        assert isinstance(strategy, DebouncedPushStrategy)
        assert strategy.debounce_seconds == 1.0


class TestTimesheetApp:

    def test_context_manager_lifecycle(self, store, scheduler, blob_remote):
        config = SyncConfig(backend='github', github_owner='me', github_repo='data', github_token='tok')
        remote = mock.MagicMock(wraps=blob_remote)
        remote.name = 'github'

        with TimesheetApp(config=config, store=store, scheduler=scheduler, remote=remote) as app:
            project = app.engine.add_project('Alpha', '#112233')
            app.timer.start(project.id, 'Work')
            assert app.engine.strategy.backend == 'github'

        remote.close.assert_called_once()
        assert blob_remote.snapshot.find_project(project.id) is not None

    def test_local_app_uses_store(self, store, scheduler):
        app = TimesheetApp(store=store, scheduler=scheduler).start()
        app.engine.add_project('Alpha', '#112233')
        app.close()

        reopened = TimesheetApp(store=store, scheduler=scheduler)
        assert [p.name for p in reopened.engine.projects] == ['Alpha']
