"""Tests for client.sync_engine module with no remote configured."""
from __future__ import annotations

from unittest import mock

import pytest

from client.strategies import LocalOnlyStrategy
from client.sync_engine import LAST_MODIFIED_KEY, SNAPSHOT_KEY, SyncEngine
from shared.errors import NotFoundError, ValidationError
from shared.models import Snapshot


@pytest.fixture
def engine(store, scheduler):
    engine = SyncEngine(store, scheduler, LocalOnlyStrategy())
    engine.start()
    return engine


def _stored_snapshot(store) -> Snapshot:
    return Snapshot.from_json(store.get(SNAPSHOT_KEY))


class TestStartup:

    def test_first_run_creates_empty_snapshot(self, store, scheduler):
        engine = SyncEngine(store, scheduler)
        assert engine.projects == []
        assert engine.entries == []
        assert engine.last_modified == scheduler.now_ms()
        assert _stored_snapshot(store) == engine.snapshot()

    def test_reload_restores_state(self, engine, store, scheduler):
        project = engine.add_project('Alpha', '#112233')
        engine.add_entry(project.id, 'Design', '2024-03-04', 2.5)

        reloaded = SyncEngine(store, scheduler)
        assert reloaded.snapshot() == engine.snapshot()

    def test_unreadable_snapshot_is_replaced(self, store, scheduler):
        store.set(SNAPSHOT_KEY, b'{not json')
        engine = SyncEngine(store, scheduler)
        assert engine.projects == []
        assert _stored_snapshot(store) == engine.snapshot()

    def test_status_is_local(self, engine):
        assert engine.get_sync_status().to_dict()['state'] == 'local'


class TestMutations:

    def test_add_project_bumps_last_modified(self, engine, scheduler):
        scheduler.advance(5)
        engine.add_project('Alpha', '#112233')
        assert engine.last_modified == scheduler.now_ms()
        assert store_last_modified(engine) == scheduler.now_ms()

    def test_store_mirrors_memory_after_every_mutation(self, engine, store, scheduler):
        alpha = engine.add_project('Alpha', '#112233')
        beta = engine.add_project('Beta', '#445566')
        entry = engine.add_entry(alpha.id, 'Design', '2024-03-04', 1.0)
        engine.update_entry(entry.id, hours=1.75, task='Design review')
        engine.update_project(beta.id, name='Beta 2')
        engine.add_entry(beta.id, 'Ops', '2024-03-05', 3)
        engine.delete_entry(entry.id)
        assert _stored_snapshot(store) == engine.snapshot()

    def test_snapshot_and_timestamp_written_together(self, engine, store):
        with mock.patch.object(store, 'set', wraps=store.set) as single, \
                mock.patch.object(store, 'set_many', wraps=store.set_many) as together:
            engine.add_project('Alpha', '#112233')

        assert together.call_count == 1
        assert set(together.call_args.args[0]) == {SNAPSHOT_KEY, LAST_MODIFIED_KEY}
        assert single.call_count == 0

    def test_update_project_keeps_unspecified_fields(self, engine):
        project = engine.add_project('Alpha', '#112233')
        updated = engine.update_project(project.id, color='#abcdef')
        assert updated.name == 'Alpha'
        assert engine.get_project(project.id).color == '#abcdef'

    def test_delete_project_cascades(self, engine):
        alpha = engine.add_project('Alpha', '#112233')
        beta = engine.add_project('Beta', '#445566')
        engine.add_entry(alpha.id, 'a', '2024-03-04', 1)
        engine.add_entry(alpha.id, 'b', '2024-03-05', 1)
        kept = engine.add_entry(beta.id, 'c', '2024-03-05', 1)

        removed = engine.delete_project(alpha.id)

        assert removed == 2
        assert [p.id for p in engine.projects] == [beta.id]
        assert engine.entries == [kept]

    def test_update_entry_rejects_unknown_fields(self, engine):
        project = engine.add_project('Alpha', '#112233')
        entry = engine.add_entry(project.id, 'a', '2024-03-04', 1)
        with pytest.raises(ValidationError):
            engine.update_entry(entry.id, billable=True)

    def test_entry_requires_existing_project(self, engine):
        with pytest.raises(ValidationError):
            engine.add_entry('missing', 'a', '2024-03-04', 1)

    def test_validation_failure_changes_nothing(self, engine, store, scheduler):
        engine.add_project('Alpha', '#112233')
        before = engine.snapshot()
        raw_before = store.get(SNAPSHOT_KEY)
        scheduler.advance(1)

        with pytest.raises(ValidationError):
            engine.add_project('', '#112233')
        with pytest.raises(ValidationError):
            engine.add_entry(before.projects[0].id, 'a', 'yesterday', 1)

        assert engine.snapshot() == before
        assert store.get(SNAPSHOT_KEY) == raw_before

    @pytest.mark.parametrize('operation', [
        lambda e: e.update_project('nope', name='x'),
        lambda e: e.delete_project('nope'),
        lambda e: e.update_entry('nope', hours=1),
        lambda e: e.delete_entry('nope'),
    ])
    def test_unknown_ids_raise_not_found(self, engine, operation):
        with pytest.raises(NotFoundError):
            operation(engine)

    def test_readers_get_copies(self, engine):
        engine.add_project('Alpha', '#112233')
        engine.projects.clear()
        engine.snapshot().projects.clear()
        assert len(engine.projects) == 1


class TestStatusListeners:

    def test_listener_failure_does_not_break_engine(self, engine):
        def broken(status):
            raise RuntimeError("listener bug")

        engine.add_status_listener(broken)
        engine.report_error("something")
        assert engine.get_sync_status().last_error == "something"


def store_last_modified(engine) -> int:
    return int(engine.store.get_text(LAST_MODIFIED_KEY))
