"""
Local-first sync engine for the Timesheet client.

Owns the in-memory snapshot, applies every mutation optimistically to memory
and the local store, and hands propagation to a push strategy (see
``client/strategies.py``) that knows how to talk to the configured remote.
"""

import threading
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from client.local_store import LocalStore
from client.scheduler import Scheduler
from client.strategies import LocalOnlyStrategy, PushStrategy
from shared.errors import NotFoundError, TransportError, ValidationError
from shared.logging_config import get_sync_logger
from shared.models import Project, Snapshot, SyncStatus, TimeEntry
from shared.utils import format_datetime, to_int_optional

logger = get_sync_logger()

SNAPSHOT_KEY = 'timesheet-data'
LAST_MODIFIED_KEY = 'timesheet-last-modified'
VERSION_KEY = 'timesheet-version'

ENTRY_FIELDS = ('project_id', 'task', 'date', 'hours', 'start_time', 'end_time')


class SyncEngine:
    """
    Sync engine that handles:
    - Loading the last snapshot from the local store at startup
    - Optimistic project/entry mutations with exact rollback
    - Handing propagation to the configured push strategy
    - Sync status reporting to listeners
    """

    def __init__(self, store: LocalStore, scheduler: Scheduler,
                 strategy: Optional[PushStrategy] = None,
                 clock: Optional[Callable[[], int]] = None):
        self.store = store
        self.scheduler = scheduler
        self.strategy = strategy or LocalOnlyStrategy()
        self.clock = clock or scheduler.now_ms

        # Guards snapshot, revision and status across the push thread
        self.state_lock = threading.RLock()
        self._revision = 0
        self._listeners: List[Callable[[Dict[str, Any]], None]] = []
        self._started = False

        self.status = SyncStatus(backend=self.strategy.backend)
        self._snapshot = self._load_local()
        self.status.version_token = self.version_token

        self.strategy.attach(self)

    # Local store
    def _load_local(self) -> Snapshot:
        """Load the snapshot saved by the previous run, or create an empty one"""
        raw = self.store.get(SNAPSHOT_KEY)
        if raw is None:
            snapshot = Snapshot.empty(self.clock())
            self._write_local(snapshot)
            logger.info("No local data found; starting with an empty timesheet")
            return snapshot

        try:
            snapshot = Snapshot.from_json(raw)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Local snapshot is unreadable ({e}); starting with an empty timesheet")
            snapshot = Snapshot.empty(self.clock())
            self._write_local(snapshot)
            return snapshot

        stored = self.stored_last_modified()
        if stored is not None and stored != snapshot.last_modified:
            snapshot = replace(snapshot, last_modified=stored)

        logger.info(f"Loaded {len(snapshot.projects)} projects and {len(snapshot.entries)} entries from local store")
        return snapshot

    def _write_local(self, snapshot: Snapshot) -> None:
        # One write so the timestamp key never disagrees with the snapshot
        self.store.set_many({
            SNAPSHOT_KEY: snapshot.to_json(),
            LAST_MODIFIED_KEY: str(snapshot.last_modified).encode('utf-8'),
        })

    def read_local_snapshot(self) -> Snapshot:
        """The snapshot as currently persisted in the local store"""
        with self.state_lock:
            raw = self.store.get(SNAPSHOT_KEY)
            return Snapshot.from_json(raw) if raw is not None else self.snapshot()

    def stored_last_modified(self) -> Optional[int]:
        """Local lastModified as kept under its own key"""
        return to_int_optional(self.store.get_text(LAST_MODIFIED_KEY))

    @property
    def version_token(self) -> Optional[str]:
        return self.store.get_text(VERSION_KEY)

    @version_token.setter
    def version_token(self, token: Optional[str]) -> None:
        with self.state_lock:
            if token:
                self.store.set_text(VERSION_KEY, token)
            else:
                self.store.remove(VERSION_KEY)
        self._update_status(version_token=token or None)

    def _commit(self, snapshot: Snapshot) -> None:
        with self.state_lock:
            # Persist first so memory never runs ahead of the store
            self._write_local(snapshot)
            self._snapshot = snapshot
            self._revision += 1

    def replace_snapshot(self, snapshot: Snapshot, version_token: Optional[str] = None,
                         expected_revision: Optional[int] = None) -> bool:
        """Replace local state wholesale (remote won, or a resync).

        With ``expected_revision`` the replacement only happens if no local
        mutation was applied since that revision was read.
        """
        with self.state_lock:
            if expected_revision is not None and expected_revision != self._revision:
                return False
            self._commit(snapshot)
            if version_token is not None:
                self.version_token = version_token
        logger.info(f"Local state replaced: {len(snapshot.projects)} projects, {len(snapshot.entries)} entries")
        return True

    # Read-only views
    @property
    def revision(self) -> int:
        return self._revision

    @property
    def last_modified(self) -> int:
        return self._snapshot.last_modified

    @property
    def projects(self) -> List[Project]:
        return list(self._snapshot.projects)

    @property
    def entries(self) -> List[TimeEntry]:
        return list(self._snapshot.entries)

    def snapshot(self) -> Snapshot:
        """Copy of the in-memory snapshot"""
        with self.state_lock:
            current = self._snapshot
            return Snapshot(list(current.projects), list(current.entries), current.last_modified)

    def get_project(self, project_id: str) -> Optional[Project]:
        return self._snapshot.find_project(project_id)

    def get_entry(self, entry_id: str) -> Optional[TimeEntry]:
        return self._snapshot.find_entry(entry_id)

    def entries_for_project(self, project_id: str) -> List[TimeEntry]:
        return [e for e in self._snapshot.entries if e.project_id == project_id]

    def _require_project(self, project_id: str) -> Project:
        project = self.get_project(project_id)
        if project is None:
            raise NotFoundError(f"Project {project_id} not found")
        return project

    def _require_entry(self, entry_id: str) -> TimeEntry:
        entry = self.get_entry(entry_id)
        if entry is None:
            raise NotFoundError(f"Entry {entry_id} not found")
        return entry

    # Mutations
    def _apply(self, transform: Callable[[Snapshot], Snapshot], remote_operation: Callable) -> None:
        """Apply a mutation locally, then propagate it; restore the prior state if propagation fails"""
        with self.state_lock:
            previous = self._snapshot
            self._commit(transform(previous).touched(self.clock()))

        try:
            self.strategy.propagate(remote_operation)
        except Exception:
            with self.state_lock:
                self._commit(previous)
            logger.warning("Remote rejected the change; local state rolled back")
            raise

    def add_project(self, name: str, color: str) -> Project:
        project = Project.create(name, color)
        self._apply(lambda s: s.with_project(project), lambda remote: remote.create_project(project))
        logger.info(f"Project created: {project.name} ({project.id})")
        return project

    def update_project(self, project_id: str, name: Optional[str] = None, color: Optional[str] = None) -> Project:
        current = self._require_project(project_id)
        updated = Project.create(
            name if name is not None else current.name,
            color if color is not None else current.color,
            id=current.id,
        )
        self._apply(lambda s: s.replacing_project(updated), lambda remote: remote.update_project(updated))
        logger.info(f"Project updated: {updated.id}")
        return updated

    def delete_project(self, project_id: str) -> int:
        """Delete a project together with its entries; returns the number of entries removed"""
        self._require_project(project_id)
        removed = len(self.entries_for_project(project_id))
        self._apply(lambda s: s.without_project(project_id), lambda remote: remote.delete_project(project_id))
        logger.info(f"Project deleted: {project_id} ({removed} entries removed)")
        return removed

    def add_entry(self, project_id: str, task: str, date: str, hours: float,
                  start_time: Optional[int] = None, end_time: Optional[int] = None) -> TimeEntry:
        entry = TimeEntry.create(project_id, task, date, hours, start_time, end_time)
        if self.get_project(project_id) is None:
            raise ValidationError(f"Entry references unknown project {project_id}")

        self._apply(lambda s: s.with_entry(entry), lambda remote: remote.create_entry(entry))
        logger.info(f"Entry created: {entry.id} ({entry.hours}h on {entry.date})")
        return entry

    def update_entry(self, entry_id: str, **changes) -> TimeEntry:
        unknown = set(changes) - set(ENTRY_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown entry fields: {', '.join(sorted(unknown))}")

        current = self._require_entry(entry_id)
        merged = {name: getattr(current, name) for name in ENTRY_FIELDS}
        merged.update(changes)
        updated = TimeEntry.create(id=current.id, **merged)
        if self.get_project(updated.project_id) is None:
            raise ValidationError(f"Entry references unknown project {updated.project_id}")

        self._apply(lambda s: s.replacing_entry(updated), lambda remote: remote.update_entry(updated))
        logger.info(f"Entry updated: {entry_id}")
        return updated

    def delete_entry(self, entry_id: str) -> None:
        self._require_entry(entry_id)
        self._apply(lambda s: s.without_entry(entry_id), lambda remote: remote.delete_entry(entry_id))
        logger.info(f"Entry deleted: {entry_id}")

    # Status
    def add_status_listener(self, listener: Callable[[Dict[str, Any]], None]) -> None:
        self._listeners.append(listener)

    def get_sync_status(self) -> SyncStatus:
        with self.state_lock:
            return replace(self.status)

    def _update_status(self, **changes) -> None:
        with self.state_lock:
            for name, value in changes.items():
                setattr(self.status, name, value)
            status = self.status.to_dict()

        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception as e:
                logger.warning(f"Sync status listener failed: {e}")

    def report_error(self, message: str, online: Optional[bool] = None) -> None:
        """Surface a non-fatal sync error"""
        changes = {'last_error': message}
        if online is not None:
            changes['is_online'] = online
        self._update_status(**changes)

    def report_failure(self, prefix: str, error: Exception) -> None:
        """Surface ``error``; transport failures also mark the engine offline"""
        self.report_error(f"{prefix}: {error}", online=False if isinstance(error, TransportError) else None)

    def mark_synced(self) -> None:
        self._update_status(is_online=True, last_error=None,
                            last_sync=format_datetime(datetime.now()))

    # Lifecycle
    def start(self) -> None:
        """Reconcile with the remote (if any) and start background scheduling"""
        if self._started:
            return
        self._started = True
        logger.info(f"Sync engine starting with {self.strategy.backend} backend")
        self.strategy.start()

    def sync_now(self) -> bool:
        """User-triggered sync; returns True when local and remote agree afterwards"""
        return self.strategy.sync_now()

    def close(self, flush: bool = True) -> None:
        """Stop timers and, with ``flush``, push anything still pending"""
        self.strategy.stop(flush=flush)
        self._started = False
        logger.info("Sync engine stopped")
