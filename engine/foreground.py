"""
Foreground Loop

The single thread that owns the active-session table. Worker threads never
touch session state directly: they hand callables to this loop, which runs
them in order on the foreground thread.

Usage:
    loop = ForegroundLoop()

    # On a worker thread:
    future = loop.submit(cache.attach, key, record)
    records = loop.call(cache.dirty_records)   # blocks the worker, not the loop

    # On the foreground thread:
    loop.run_pending()          # drain queued callbacks once
    loop.run_forever(stop)      # or keep draining until stop is set
"""

import logging
import queue
import threading
from concurrent.futures import Future
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class ForegroundLoop:
    """Queue of callables executed on the owning thread"""

    def __init__(self):
        self._queue: "queue.Queue[tuple]" = queue.Queue()
        self._closed = False
        self._close_lock = threading.Lock()
        self._owner: Optional[int] = None

    @property
    def closed(self) -> bool:
        return self._closed

    def bind(self) -> None:
        """Make the calling thread the foreground thread"""
        self._owner = threading.get_ident()

    def in_foreground(self) -> bool:
        return self._owner is None or self._owner == threading.get_ident()

    def submit(self, fn: Callable[..., Any], *args, **kwargs) -> Future:
        """
        Queue a call for the foreground thread.

        Returns:
            Future with the call's result. If the loop is already closed the
            future comes back cancelled and the call never runs.
        """
        future: Future = Future()
        with self._close_lock:
            if self._closed:
                future.cancel()
                return future
            self._queue.put((future, fn, args, kwargs))
        return future

    def call(self, fn: Callable[..., Any], *args, timeout: Optional[float] = None, **kwargs) -> Any:
        """
        Run fn on the foreground thread and wait for its result.

        Must be called from a worker thread. Raises CancelledError if the loop
        shuts down before the call runs.
        """
        if self._owner is not None and self._owner == threading.get_ident():
            # Already on the foreground thread, waiting would deadlock
            return fn(*args, **kwargs)
        return self.submit(fn, *args, **kwargs).result(timeout=timeout)

    def run_pending(self, max_tasks: Optional[int] = None) -> int:
        """
        Run queued callbacks on the calling thread.

        Returns:
            Number of callbacks run
        """
        ran = 0
        while max_tasks is None or ran < max_tasks:
            try:
                future, fn, args, kwargs = self._queue.get_nowait()
            except queue.Empty:
                break
            self._run(future, fn, args, kwargs)
            ran += 1
        return ran

    def run_forever(self, stop: threading.Event, poll_interval: float = 0.05) -> None:
        """Drain callbacks until stop is set"""
        self.bind()
        logger.info("Foreground loop started")
        while not stop.is_set():
            try:
                future, fn, args, kwargs = self._queue.get(timeout=poll_interval)
            except queue.Empty:
                continue
            self._run(future, fn, args, kwargs)
        logger.info("Foreground loop stopped")

    def close(self) -> int:
        """
        Stop accepting work and cancel everything still queued.

        Returns:
            Number of callbacks cancelled
        """
        with self._close_lock:
            self._closed = True

        cancelled = 0
        while True:
            try:
                future, _, _, _ = self._queue.get_nowait()
            except queue.Empty:
                break
            future.cancel()
            cancelled += 1
        if cancelled:
            logger.debug(f"Cancelled {cancelled} pending foreground callbacks")
        return cancelled

    @staticmethod
    def _run(future: Future, fn, args, kwargs) -> None:
        if not future.set_running_or_notify_cancel():
            return
        try:
            result = fn(*args, **kwargs)
        except Exception as e:
            logger.error(f"Foreground callback {getattr(fn, '__name__', fn)} failed: {e}", exc_info=True)
            future.set_exception(e)
        else:
            future.set_result(result)
