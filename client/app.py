"""
Application context: wires the local store, remote client, push strategy,
sync engine and timer store together from configuration.

Entry points own exactly one ``TimesheetApp`` and pass it to whatever needs
it; nothing in the client looks the engine up globally.
"""

from typing import Optional

from client.config import load_config
from client.github_client import GitHubRemoteClient
from client.local_store import LocalStore, SQLiteStore
from client.remote import RemoteAuthorityClient
from client.rest_client import RestRemoteClient
from client.scheduler import QtScheduler, Scheduler
from client.strategies import (DebouncedPushStrategy, ImmediateWriteStrategy,
                               LocalOnlyStrategy, PushStrategy)
from client.sync_engine import SyncEngine
from client.timer import ActiveTimerStore
from shared.logging_config import get_client_logger
from shared.models import SyncConfig

logger = get_client_logger()


def build_remote_client(config: SyncConfig) -> Optional[RemoteAuthorityClient]:
    """Remote client for the configured backend, or None when running local-only"""
    if config.backend == 'rest':
        return RestRemoteClient(config.api_url, api_key=config.api_key, timeout=config.timeout)
    if config.backend == 'github':
        return GitHubRemoteClient(
            config.github_owner,
            config.github_repo,
            config.github_token,
            branch=config.github_branch,
            data_path=config.github_path,
            timeout=config.timeout,
        )
    return None


def build_strategy(config: SyncConfig, client: Optional[RemoteAuthorityClient]) -> PushStrategy:
    if client is None:
        return LocalOnlyStrategy()
    if config.backend == 'rest':
        return ImmediateWriteStrategy(client, sync_interval=config.sync_interval)
    return DebouncedPushStrategy(client, debounce_seconds=config.debounce_seconds,
                                 sync_interval=config.sync_interval)


class TimesheetApp:
    """Owns the client-side components for one run of the program"""

    def __init__(self, config: Optional[SyncConfig] = None, store: Optional[LocalStore] = None,
                 scheduler: Optional[Scheduler] = None, remote: Optional[RemoteAuthorityClient] = None):
        self.store = store or SQLiteStore()
        self.config = config or load_config(self.store)
        self.scheduler = scheduler or QtScheduler()
        self.remote = remote or build_remote_client(self.config)

        self.engine = SyncEngine(self.store, self.scheduler, build_strategy(self.config, self.remote))
        self.timer = ActiveTimerStore(self.store, self.engine)

    def start(self) -> 'TimesheetApp':
        self.engine.start()
        return self

    def close(self, flush: bool = True) -> None:
        self.engine.close(flush=flush)
        if self.remote is not None:
            self.remote.close()

    def __enter__(self) -> 'TimesheetApp':
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
