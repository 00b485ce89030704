"""
Active timer: a single in-flight timer kept in the local store only.

Stopping the timer materializes a time entry through the sync engine, so the
entry is synced like any other mutation while the timer itself never is.
"""

import json
from typing import Callable, Optional

from client.local_store import LocalStore
from shared.errors import ValidationError
from shared.logging_config import get_client_logger
from shared.models import ActiveTimer, TimeEntry
from shared.utils import MS_PER_HOUR, ms_to_local_date

logger = get_client_logger()

ACTIVE_TIMER_KEY = 'timesheet-active-timer'


class ActiveTimerStore:

    def __init__(self, store: LocalStore, engine, clock: Optional[Callable[[], int]] = None):
        self.store = store
        self.engine = engine
        self.clock = clock or engine.clock
        self._timer = self._load()

    def _load(self) -> Optional[ActiveTimer]:
        raw = self.store.get(ACTIVE_TIMER_KEY)
        if raw is None:
            return None
        try:
            return ActiveTimer.from_dict(json.loads(raw.decode('utf-8')))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Discarding unreadable active timer: {e}")
            self.store.remove(ACTIVE_TIMER_KEY)
            return None

    def _save(self, timer: Optional[ActiveTimer]) -> None:
        if timer is None:
            self.store.remove(ACTIVE_TIMER_KEY)
        else:
            self.store.set(ACTIVE_TIMER_KEY, json.dumps(timer.to_dict()).encode('utf-8'))
        self._timer = timer

    @property
    def active(self) -> Optional[ActiveTimer]:
        return self._timer

    @property
    def is_running(self) -> bool:
        return self._timer is not None

    def elapsed_seconds(self) -> int:
        if self._timer is None:
            return 0
        return max(0, (self.clock() - self._timer.start_time) // 1000)

    def start(self, project_id: str, task: str = '') -> ActiveTimer:
        """Start timing; a running timer is replaced without producing an entry"""
        if self.engine.get_project(project_id) is None:
            raise ValidationError(f"Cannot start timer for unknown project {project_id}")

        if self._timer is not None:
            logger.info(f"Replacing running timer for project {self._timer.project_id}")

        timer = ActiveTimer(project_id=project_id, task=task or '', start_time=self.clock())
        self._save(timer)
        logger.info(f"Timer started for project {project_id}")
        return timer

    def stop(self) -> Optional[TimeEntry]:
        """Stop timing and book the elapsed time as an entry dated today.

        Returns None when no timer is running. If the entry cannot be added
        the timer keeps running.
        """
        timer = self._timer
        if timer is None:
            return None

        end_time = max(self.clock(), timer.start_time)
        hours = round((end_time - timer.start_time) / MS_PER_HOUR, 2)
        entry = self.engine.add_entry(
            timer.project_id,
            timer.task,
            ms_to_local_date(end_time).isoformat(),
            hours,
            start_time=timer.start_time,
            end_time=end_time,
        )

        self._save(None)
        logger.info(f"Timer stopped: {hours}h booked as entry {entry.id}")
        return entry

    def clear(self) -> None:
        """Discard the running timer without creating an entry"""
        if self._timer is not None:
            logger.info("Timer cleared")
        self._save(None)
