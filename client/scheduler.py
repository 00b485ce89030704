"""
Timer scheduling for the sync engine.

Two implementations share one small interface:

- ``QtScheduler`` drives timers from the Qt event loop (``QTimer``) and runs
  submitted work on daemon threads so remote calls never block the loop.
- ``ManualScheduler`` is a virtual clock. Nothing happens until ``advance()``
  is called, and submitted work runs inline, which makes timing deterministic
  in tests.
"""

import heapq
import itertools
import threading
from typing import Callable, List, Optional, Tuple

from PyQt6.QtCore import QObject, QTimer

from shared.logging_config import get_sync_logger
from shared.utils import now_ms

logger = get_sync_logger()


class TimerHandle:
    """Cancellable reference to a scheduled callback"""

    def cancel(self) -> None:
        raise NotImplementedError

    @property
    def active(self) -> bool:
        raise NotImplementedError


class Scheduler:
    """Delayed tasks, recurring tasks and off-loop work"""

    def now_ms(self) -> int:
        raise NotImplementedError

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        """Run ``callback`` once after ``delay`` seconds"""
        raise NotImplementedError

    def call_every(self, interval: float, callback: Callable[[], None]) -> TimerHandle:
        """Run ``callback`` every ``interval`` seconds until cancelled"""
        raise NotImplementedError

    def submit(self, work: Callable[[], None]) -> None:
        """Run ``work`` without blocking the caller's event loop"""
        raise NotImplementedError


def _run_guarded(work: Callable[[], None]) -> None:
    # Exceptions escaping a Qt slot abort the process
    try:
        work()
    except Exception as e:
        logger.error(f"Scheduled task failed: {e}", exc_info=True)


class QtTimerHandle(TimerHandle):

    def __init__(self, timer: QTimer):
        self._timer: Optional[QTimer] = timer

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.stop()
            self._timer.deleteLater()
            self._timer = None

    @property
    def active(self) -> bool:
        return self._timer is not None and self._timer.isActive()


class QtScheduler(Scheduler):
    """Scheduler backed by QTimer; requires a running QCoreApplication for timers to fire"""

    def __init__(self, parent: Optional[QObject] = None):
        self._owner = QObject(parent)

    def now_ms(self) -> int:
        return now_ms()

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        timer = QTimer(self._owner)
        timer.setSingleShot(True)
        handle = QtTimerHandle(timer)

        def fire():
            handle.cancel()
            _run_guarded(callback)

        timer.timeout.connect(fire)
        timer.start(int(delay * 1000))
        return handle

    def call_every(self, interval: float, callback: Callable[[], None]) -> TimerHandle:
        timer = QTimer(self._owner)
        timer.timeout.connect(lambda: _run_guarded(callback))
        timer.start(int(interval * 1000))
        return QtTimerHandle(timer)

    def submit(self, work: Callable[[], None]) -> None:
        worker = threading.Thread(target=_run_guarded, args=(work,), daemon=True)
        worker.start()


class ManualTimerHandle(TimerHandle):

    def __init__(self, callback: Callable[[], None], interval: Optional[float]):
        self.callback = callback
        self.interval = interval
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True

    @property
    def active(self) -> bool:
        return not self.cancelled and not self.fired


class ManualScheduler(Scheduler):
    """Virtual-clock scheduler; time only moves when ``advance`` is called"""

    def __init__(self, start: float = 0.0):
        self._now = start
        self._queue: List[Tuple[float, int, ManualTimerHandle]] = []
        self._sequence = itertools.count()

    @property
    def now(self) -> float:
        return self._now

    def now_ms(self) -> int:
        return int(round(self._now * 1000))

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        handle = ManualTimerHandle(callback, interval=None)
        self._schedule(handle, self._now + delay)
        return handle

    def call_every(self, interval: float, callback: Callable[[], None]) -> TimerHandle:
        handle = ManualTimerHandle(callback, interval=interval)
        self._schedule(handle, self._now + interval)
        return handle

    def submit(self, work: Callable[[], None]) -> None:
        work()

    def _schedule(self, handle: ManualTimerHandle, due: float) -> None:
        heapq.heappush(self._queue, (due, next(self._sequence), handle))

    def advance(self, seconds: float) -> None:
        """Move the clock forward, firing every timer that falls due on the way"""
        target = self._now + seconds
        while self._queue and self._queue[0][0] <= target:
            due, _, handle = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self._now = due
            if handle.interval is not None:
                self._schedule(handle, due + handle.interval)
            else:
                handle.fired = True
            handle.callback()
        self._now = target

    def active_timers(self) -> int:
        return sum(1 for _, _, handle in self._queue if handle.active)
