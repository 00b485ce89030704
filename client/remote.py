"""
Remote authority contract.

Every backend can fetch and write whole snapshots with optimistic concurrency.
Backends with per-record endpoints additionally implement ``CrudRemoteClient``.
"""

from typing import List, Optional, Tuple

from shared.models import Project, Snapshot, TimeEntry


class RemoteAuthorityClient:
    """Snapshot-level access to the remote authority"""

    name = 'remote'

    def health_check(self) -> bool:
        """Return True if the remote is reachable and accepts our credentials"""
        raise NotImplementedError

    def fetch_snapshot(self) -> Optional[Tuple[Snapshot, str]]:
        """Return (snapshot, version token), or None when no remote data exists yet.

        Raises TransportError on network or authority failure.
        """
        raise NotImplementedError

    def write_snapshot(self, snapshot: Snapshot, expected_version: Optional[str] = None) -> str:
        """Replace the remote snapshot and return the new version token.

        Raises ConflictError when ``expected_version`` no longer matches the
        remote, TransportError on network failure.
        """
        raise NotImplementedError

    def close(self) -> None:
        pass


class CrudRemoteClient(RemoteAuthorityClient):
    """Remote authority that also exposes per-record operations"""

    def list_projects(self) -> List[Project]:
        raise NotImplementedError

    def list_entries(self, start_date: Optional[str] = None, end_date: Optional[str] = None,
                     project_id: Optional[str] = None) -> List[TimeEntry]:
        raise NotImplementedError

    def create_project(self, project: Project) -> Project:
        raise NotImplementedError

    def update_project(self, project: Project) -> Project:
        raise NotImplementedError

    def delete_project(self, project_id: str) -> None:
        raise NotImplementedError

    def create_entry(self, entry: TimeEntry) -> TimeEntry:
        raise NotImplementedError

    def update_entry(self, entry: TimeEntry) -> TimeEntry:
        raise NotImplementedError

    def delete_entry(self, entry_id: str) -> None:
        raise NotImplementedError
