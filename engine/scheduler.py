"""
Persistence Scheduler

Owns all background work of the stats tracker:
- One-off loads and saves requested by the session cache
- A periodic sweep saving every dirty cached record
- A periodic leaderboard refresh
- The final flush on shutdown

Database calls never run on the foreground thread. Each unit of work logs
its own failures, so nothing escapes into the worker pool.
"""

import logging
import threading
from concurrent.futures import CancelledError, Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from engine.foreground import ForegroundLoop
    from engine.leaderboard import LeaderboardView
    from engine.session_cache import SessionCache
    from persistence.record import StatsRecord
    from persistence.stats_repository import StatsRepository

logger = logging.getLogger(__name__)


@dataclass
class SchedulerConfig:
    """Timing and pool settings for background work"""
    worker_threads: int = 4
    save_interval: float = 60.0          # Seconds between dirty-record sweeps
    toplist_interval: float = 300.0      # Seconds between leaderboard refreshes
    top_type: str = 'kills'
    top_items: int = 5


class PeriodicTask:
    """
    Runs a callable on its own thread every `interval` seconds.

    Runs never overlap: the next wait starts only after the previous run
    returned.
    """

    def __init__(self, name: str, interval: float, action: Callable[[], Any],
                 initial_delay: Optional[float] = None):
        self.name = name
        self.interval = interval
        self.initial_delay = interval if initial_delay is None else initial_delay
        self._action = action
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.runs = 0

    def start(self) -> None:
        self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()

    def request_stop(self) -> None:
        self._stop.set()

    def stop(self, timeout: Optional[float] = None) -> None:
        self.request_stop()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def _loop(self) -> None:
        delay = self.initial_delay
        while not self._stop.wait(delay):
            try:
                self._action()
            except Exception as e:
                logger.error(f"Periodic task {self.name} failed: {e}", exc_info=True)
            self.runs += 1
            delay = self.interval


class PersistenceScheduler:
    """
    Background execution for loads, saves, sweeps and leaderboard refreshes.

    Usage:
        scheduler = PersistenceScheduler(repository, foreground, leaderboard, SchedulerConfig())
        cache = SessionCache(repository, scheduler, foreground)
        scheduler.bind_cache(cache)
        scheduler.start()
        ...
        scheduler.shutdown()    # on the foreground thread
    """

    def __init__(self, repository: 'StatsRepository', foreground: 'ForegroundLoop',
                 leaderboard: 'LeaderboardView', settings: Optional[SchedulerConfig] = None,
                 executor: Optional[Executor] = None):
        self._repository = repository
        self._foreground = foreground
        self._leaderboard = leaderboard
        self.settings = settings or SchedulerConfig()
        self._executor = executor or ThreadPoolExecutor(
            max_workers=self.settings.worker_threads,
            thread_name_prefix='stats-io',
        )
        self._cache: Optional['SessionCache'] = None
        self._tasks: List[PeriodicTask] = []
        self._shut_down = False

    @property
    def running(self) -> bool:
        return bool(self._tasks) and not self._shut_down

    # =========================================================================
    # One-off work
    # =========================================================================

    def run_async(self, fn: Callable[..., Any], *args) -> Optional[Future]:
        """Run fn(*args) on a worker thread. Failures are logged, never raised."""
        if self._shut_down:
            logger.debug(f"Scheduler shut down, dropping {getattr(fn, '__name__', fn)}")
            return None
        try:
            return self._executor.submit(self._guarded, fn, *args)
        except RuntimeError as e:
            # Executor already shut down
            logger.debug(f"Could not schedule {getattr(fn, '__name__', fn)}: {e}")
            return None

    @staticmethod
    def _guarded(fn: Callable[..., Any], *args) -> Any:
        try:
            return fn(*args)
        except Exception as e:
            logger.error(f"Background task {getattr(fn, '__name__', fn)} failed: {e}", exc_info=True)
            return None

    def save_async(self, record: 'StatsRecord') -> Optional[Future]:
        """Save a single record in the background"""
        return self.run_async(self._repository.save_batch, [record])

    # =========================================================================
    # Periodic work
    # =========================================================================

    def bind_cache(self, cache: 'SessionCache') -> None:
        """Set the cache that sweeps and the shutdown flush read from"""
        self._cache = cache

    def start(self) -> None:
        """Start the sweep and leaderboard timers"""
        if not self._repository.enabled:
            logger.warning("Persistence disabled, background saving not started")
            return

        self._tasks = [
            PeriodicTask('stats-sweep', self.settings.save_interval, self.sweep),
            # First refresh right away so the leaderboard isn't empty for minutes
            PeriodicTask('stats-toplist', self.settings.toplist_interval, self.refresh_leaderboard,
                         initial_delay=0),
        ]
        for task in self._tasks:
            task.start()
        logger.info(f"Scheduler started: sweep every {self.settings.save_interval}s, "
                    f"leaderboard every {self.settings.toplist_interval}s")

    def sweep(self) -> int:
        """
        Save every dirty record of the currently active sessions.

        The list comes from the foreground thread, so detached sessions are
        never persisted by a sweep.

        Returns:
            Number of records written
        """
        if not self._repository.enabled or self._cache is None:
            return 0

        try:
            dirty = self._foreground.call(self._cache.dirty_records)
        except CancelledError:
            # Foreground loop closed, shutdown flush takes over
            return 0

        if not dirty:
            return 0
        written = self._repository.save_batch(dirty)
        logger.debug(f"Sweep saved {written} of {len(dirty)} dirty records")
        return written

    def refresh_leaderboard(self) -> None:
        """Rebuild the leaderboard from the database"""
        if not self._repository.enabled:
            return
        entries = self._repository.top_list(self.settings.top_type, self.settings.top_items)
        self._leaderboard.replace(entries)

    # =========================================================================
    # Shutdown
    # =========================================================================

    def shutdown(self, timeout: Optional[float] = 10.0) -> int:
        """
        Stop background work, save all cached records and close the database.

        Must run on the foreground thread. Attached records are removed from
        the cache even if the final save fails.

        Returns:
            Number of records written by the final flush
        """
        if self._shut_down:
            return 0
        self._shut_down = True

        for task in self._tasks:
            task.request_stop()
        # Unblocks a sweep waiting on the foreground thread
        self._foreground.close()
        for task in self._tasks:
            task.stop(timeout)
        self._tasks = []

        # Let in-flight saves finish, their order decides which write lands last
        self._executor.shutdown(wait=True)

        written = 0
        try:
            logger.info("Saving all cached player stats")
            if self._cache is not None:
                dirty = self._cache.unsaved_records()
                if dirty:
                    written = self._repository.save_batch(dirty)
        finally:
            # Make really sure every attachment is gone and the pool closed, even on error
            if self._cache is not None:
                self._cache.clear()
            self._repository.close()
        return written
