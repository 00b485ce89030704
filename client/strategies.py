"""
Push strategies: how local mutations reach the remote authority.

- ``LocalOnlyStrategy``: no remote configured, local store only.
- ``ImmediateWriteStrategy``: per-record backends. Each mutation is written
  to the remote right away; a failure propagates to the engine, which rolls
  back the local change.
- ``DebouncedPushStrategy``: whole-snapshot backends. Mutations only raise a
  pending flag; the snapshot is pushed once the debounce window closes or on
  the periodic tick, with optimistic-concurrency conflict handling.
"""

import threading
from typing import Callable, Optional

from client.remote import CrudRemoteClient, RemoteAuthorityClient
from shared.errors import ConflictError, TimesheetError
from shared.logging_config import get_sync_logger
from shared.models import Snapshot

logger = get_sync_logger()

MAX_CONFLICT_RETRIES = 3
FLUSH_TIMEOUT = 30  # seconds to wait for an in-flight push at shutdown


class PushStrategy:
    """Base strategy; attached to exactly one ``SyncEngine``"""

    backend = 'local'

    def __init__(self):
        self.engine = None

    def attach(self, engine) -> None:
        self.engine = engine

    @property
    def pending(self) -> bool:
        return False

    def start(self) -> None:
        pass

    def stop(self, flush: bool = True) -> None:
        pass

    def propagate(self, operation: Callable) -> None:
        """Called after a mutation has been applied locally"""
        pass

    def sync_now(self) -> bool:
        return True


class LocalOnlyStrategy(PushStrategy):

    def start(self) -> None:
        logger.info("Remote sync not configured; data is kept in the local store only")


class ImmediateWriteStrategy(PushStrategy):
    """Write-through to a CRUD backend, with a periodic full resync"""

    def __init__(self, client: CrudRemoteClient, sync_interval: Optional[float] = None):
        super().__init__()
        self.client = client
        self.backend = client.name
        self.sync_interval = sync_interval
        self._periodic = None
        self._sync_lock = threading.Lock()

    def start(self) -> None:
        self.sync_now()
        if self.sync_interval:
            self._periodic = self.engine.scheduler.call_every(self.sync_interval, self._on_periodic)

    def stop(self, flush: bool = True) -> None:
        if self._periodic is not None:
            self._periodic.cancel()
            self._periodic = None

    def _on_periodic(self) -> None:
        self.engine.scheduler.submit(self.sync_now)

    def check_connection(self) -> bool:
        online = self.client.health_check()
        if online:
            self.engine._update_status(is_online=True)
        else:
            self.engine.report_error(f"Cannot connect to {self.backend} server", online=False)
        return online

    def propagate(self, operation: Callable) -> None:
        try:
            operation(self.client)
        except TimesheetError as e:
            logger.warning(f"Remote write failed: {e}")
            self.engine.report_failure("Remote write failed", e)
            raise
        self.engine.mark_synced()

    def sync_now(self) -> bool:
        """Replace local state with the remote's project and entry lists"""
        # Prevent concurrent resyncs
        if not self._sync_lock.acquire(blocking=False):
            logger.debug("Resync already in progress, skipping")
            return False

        engine = self.engine
        try:
            engine._update_status(is_syncing=True)
            if not self.check_connection():
                return False

            revision = engine.revision
            try:
                projects = self.client.list_projects()
                entries = self.client.list_entries()
            except TimesheetError as e:
                logger.warning(f"Failed to load remote data: {e}")
                engine.report_failure("Failed to load remote data", e)
                return False

            snapshot = Snapshot(projects, entries, engine.clock())
            if not engine.replace_snapshot(snapshot, expected_revision=revision):
                logger.info("Local change landed during resync; keeping local state")
                return False

            engine.mark_synced()
            return True
        finally:
            engine._update_status(is_syncing=False)
            self._sync_lock.release()


class DebouncedPushStrategy(PushStrategy):
    """Coalesced whole-snapshot pushes with last-writer-wins conflict handling"""

    def __init__(self, client: RemoteAuthorityClient, debounce_seconds: float = 2.0,
                 sync_interval: float = 30, max_conflict_retries: int = MAX_CONFLICT_RETRIES,
                 flush_timeout: float = FLUSH_TIMEOUT):
        super().__init__()
        self.client = client
        self.backend = client.name
        self.debounce_seconds = debounce_seconds
        self.sync_interval = sync_interval
        self.max_conflict_retries = max_conflict_retries
        self.flush_timeout = flush_timeout

        self._pending = False
        self._reconciled = False
        self._debounce = None
        self._periodic = None
        self._push_lock = threading.Lock()

    @property
    def pending(self) -> bool:
        return self._pending

    @property
    def is_pushing(self) -> bool:
        return self._push_lock.locked()

    def _set_pending(self, value: bool) -> None:
        self._pending = value
        self.engine._update_status(pending=value)

    # Lifecycle
    def start(self) -> None:
        self.reconcile()
        if self._pending:
            self.engine.scheduler.submit(self.push)
        self._periodic = self.engine.scheduler.call_every(self.sync_interval, self._on_periodic)

    def stop(self, flush: bool = True) -> None:
        for handle in (self._debounce, self._periodic):
            if handle is not None:
                handle.cancel()
        self._debounce = None
        self._periodic = None

        if flush and (self._pending or self.is_pushing):
            logger.info("Flushing pending changes before shutdown")
            if not self.push(wait=self.flush_timeout) and self._pending:
                logger.warning("Shutdown flush did not complete; changes stay in the local store for the next run")

    # Timers
    def propagate(self, operation: Callable) -> None:
        self._set_pending(True)
        # Every mutation restarts the window so a burst yields one push
        if self._debounce is not None:
            self._debounce.cancel()
        self._debounce = self.engine.scheduler.call_later(self.debounce_seconds, self._on_debounce)

    def _on_debounce(self) -> None:
        self._debounce = None
        self.engine.scheduler.submit(self.push)

    def _on_periodic(self) -> None:
        self.engine.scheduler.submit(self._periodic_sync)

    def _periodic_sync(self) -> None:
        if not self._reconciled:
            self.reconcile()
        if self._pending:
            self.push()

    # Sync
    def reconcile(self) -> bool:
        """Compare remote and local timestamps and let the newer side win"""
        engine = self.engine
        revision = engine.revision
        try:
            result = self.client.fetch_snapshot()
        except TimesheetError as e:
            logger.warning(f"Remote unavailable, working offline: {e}")
            engine.report_failure("Working offline", e)
            return False

        self._reconciled = True
        if result is None:
            logger.info("No remote data yet; local snapshot will be pushed")
            engine.version_token = None
            self._set_pending(True)
            engine.mark_synced()
            return True

        remote, token = result
        local_modified = engine.stored_last_modified() or 0

        if remote.last_modified > local_modified and engine.replace_snapshot(
                remote, version_token=token, expected_revision=revision):
            logger.info(f"Remote is newer ({remote.last_modified} > {local_modified}); adopted remote snapshot")
            self._set_pending(False)
        else:
            engine.version_token = token
            if engine.last_modified > remote.last_modified:
                logger.info("Local is newer than remote; scheduling push")
                self._set_pending(True)

        engine.mark_synced()
        return True

    def sync_now(self) -> bool:
        if not self.reconcile():
            return False
        if self._pending:
            return self.push()
        return True

    def push(self, wait: Optional[float] = None) -> bool:
        """Push the local snapshot; returns True when the remote holds our data (or newer)

        With ``wait`` an in-flight push is waited on for up to that many seconds
        instead of being skipped, and nothing is sent if it already delivered
        everything.
        """
        # Only one push in flight; later changes stay pending for the next one
        if wait:
            acquired = self._push_lock.acquire(timeout=wait)
        else:
            acquired = self._push_lock.acquire(blocking=False)
        if not acquired:
            logger.debug("Push already in progress, skipping")
            return False

        try:
            if wait and not self._pending:
                return True
            self.engine._update_status(is_syncing=True)
            return self._push_with_retry()
        finally:
            self.engine._update_status(is_syncing=False)
            self._push_lock.release()

    def _push_with_retry(self) -> bool:
        engine = self.engine
        for attempt in range(1, self.max_conflict_retries + 1):
            revision = engine.revision
            snapshot = engine.read_local_snapshot()

            try:
                token = self.client.write_snapshot(snapshot, engine.version_token)
            except ConflictError as e:
                logger.warning(f"Push rejected as stale (attempt {attempt}/{self.max_conflict_retries}): {e}")
                outcome = self._resolve_conflict(revision)
                if outcome is None:
                    continue
                return outcome
            except TimesheetError as e:
                logger.warning(f"Push failed, changes stay pending: {e}")
                engine.report_failure("Sync failed", e)
                return False

            with engine.state_lock:
                engine.version_token = token
                # A mutation during the push keeps the flag for the next round
                if engine.revision == revision:
                    self._set_pending(False)
            engine.mark_synced()
            logger.info(f"Pushed snapshot ({len(snapshot.projects)} projects, {len(snapshot.entries)} entries)")
            return True

        engine.report_error(f"Gave up after {self.max_conflict_retries} conflicting pushes; will retry")
        return False

    def _resolve_conflict(self, revision: int) -> Optional[bool]:
        """Re-fetch after a rejected push.

        Returns True if the newer remote snapshot was adopted, False if the
        remote could not be reached, None if the push should be retried.
        """
        engine = self.engine
        try:
            result = self.client.fetch_snapshot()
        except TimesheetError as e:
            logger.warning(f"Re-fetch after conflict failed: {e}")
            engine.report_failure("Sync failed", e)
            return False

        if result is None:
            engine.version_token = None
            return None

        remote, token = result
        with engine.state_lock:
            if remote.last_modified > engine.last_modified and engine.revision == revision:
                engine.replace_snapshot(remote, version_token=token)
                self._set_pending(False)
                adopted = True
            else:
                engine.version_token = token
                adopted = False

        if adopted:
            logger.info("Remote snapshot is newer; adopted it instead of pushing")
            engine.mark_synced()
            return True
        return None
