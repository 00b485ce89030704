"""Shared pytest fixtures."""
from __future__ import annotations

import os
import threading
from typing import Callable, Dict, List, Optional

import pytest

from client.local_store import MemoryStore
from client.remote import CrudRemoteClient, RemoteAuthorityClient
from client.scheduler import ManualScheduler
from shared.errors import ConflictError, NotFoundError, TransportError
from shared.models import Project, Snapshot, TimeEntry

# 2023-11-14 22:13:20 UTC
START_TIME = 1_700_000_000.0


class FakeBlobRemote(RemoteAuthorityClient):
    """In-memory whole-snapshot authority with sequential version tokens."""

    name = 'github'

    def __init__(self):
        self.snapshot: Optional[Snapshot] = None
        self.version = 0
        self.online = True
        self.writes: List[Snapshot] = []
        self.fetches = 0
        self.conflicts = 0
        self.on_write: Optional[Callable[[], None]] = None

    @property
    def token(self) -> str:
        return f"v{self.version}"

    def seed(self, snapshot: Snapshot) -> str:
        self.snapshot = Snapshot.from_dict(snapshot.to_dict())
        self.version += 1
        return self.token

    def health_check(self) -> bool:
        return self.online

    def fetch_snapshot(self):
        self.fetches += 1
        if not self.online:
            raise TransportError("Connection refused")
        if self.snapshot is None:
            return None
        return Snapshot.from_dict(self.snapshot.to_dict()), self.token

    def write_snapshot(self, snapshot, expected_version=None):
        if not self.online:
            raise TransportError("Connection refused")
        if self.on_write is not None:
            hook, self.on_write = self.on_write, None
            hook()
        if self.snapshot is not None and expected_version != self.token:
            self.conflicts += 1
            raise ConflictError(f"expected {self.token}, got {expected_version}")
        self.snapshot = Snapshot.from_dict(snapshot.to_dict())
        self.version += 1
        self.writes.append(self.snapshot)
        return self.token


class SlowBlobRemote(FakeBlobRemote):
    """Blob authority whose writes block until ``release`` is set."""

    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def write_snapshot(self, snapshot, expected_version=None):
        self.entered.set()
        self.release.wait(5)
        return super().write_snapshot(snapshot, expected_version)


class FakeCrudRemote(CrudRemoteClient):
    """In-memory per-record authority."""

    name = 'rest'

    def __init__(self):
        self.projects: Dict[str, Project] = {}
        self.entries: Dict[str, TimeEntry] = {}
        self.online = True

    def _check(self):
        if not self.online:
            raise TransportError("Connection refused")

    def health_check(self) -> bool:
        return self.online

    def list_projects(self):
        self._check()
        return list(self.projects.values())

    def list_entries(self, start_date=None, end_date=None, project_id=None):
        self._check()
        return list(self.entries.values())

    def create_project(self, project):
        self._check()
        self.projects[project.id] = project
        return project

    def update_project(self, project):
        self._check()
        if project.id not in self.projects:
            raise NotFoundError("Project not found")
        self.projects[project.id] = project
        return project

    def delete_project(self, project_id):
        self._check()
        if self.projects.pop(project_id, None) is None:
            raise NotFoundError("Project not found")
        self.entries = {k: e for k, e in self.entries.items() if e.project_id != project_id}

    def create_entry(self, entry):
        self._check()
        self.entries[entry.id] = entry
        return entry

    def update_entry(self, entry):
        self._check()
        if entry.id not in self.entries:
            raise NotFoundError("Entry not found")
        self.entries[entry.id] = entry
        return entry

    def delete_entry(self, entry_id):
        self._check()
        if self.entries.pop(entry_id, None) is None:
            raise NotFoundError("Entry not found")


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Keep tests away from the real data directory and sync settings."""
    for name in list(os.environ):
        if name.startswith('TIMESHEET_'):
            monkeypatch.delenv(name)
    monkeypatch.setenv('TIMESHEET_DATA_DIR', str(tmp_path / 'data'))


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler(start=START_TIME)


@pytest.fixture
def blob_remote() -> FakeBlobRemote:
    return FakeBlobRemote()


@pytest.fixture
def slow_blob_remote() -> SlowBlobRemote:
    return SlowBlobRemote()


@pytest.fixture
def crud_remote() -> FakeCrudRemote:
    return FakeCrudRemote()
