"""
Shared fixtures for the cache, scheduler and app tests.

ManualExecutor stands in for the worker pool: submitted work only runs when
a test calls run_all(), which makes "what is in flight" fully controllable.
"""

import sys
from concurrent.futures import Executor, Future
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest

from engine import ForegroundLoop, SchedulerConfig, build_tracker
from persistence.stats_repository import StatsRepository


class ManualExecutor(Executor):
    """Executor that queues work until run_all() is called"""

    def __init__(self):
        self.pending = []
        self.shut_down = False

    def submit(self, fn, *args, **kwargs):
        if self.shut_down:
            raise RuntimeError("cannot schedule new futures after shutdown")
        future = Future()
        self.pending.append((future, fn, args, kwargs))
        return future

    def run_all(self) -> int:
        ran = 0
        while self.pending:
            future, fn, args, kwargs = self.pending.pop(0)
            if not future.set_running_or_notify_cancel():
                continue
            try:
                future.set_result(fn(*args, **kwargs))
            except Exception as e:
                future.set_exception(e)
            ran += 1
        return ran

    def shutdown(self, wait=True, *, cancel_futures=False):
        self.shut_down = True
        if wait:
            self.run_all()


class CountingRepository(StatsRepository):
    """Repository that remembers every lookup it served"""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.load_calls = []
        self.save_calls = []

    def load_one(self, key):
        self.load_calls.append(key)
        return super().load_one(key)

    def save_batch(self, records):
        records = list(records) if records is not None else None
        self.save_calls.append(records)
        return super().save_batch(records)


@pytest.fixture
def repository():
    base = StatsRepository.from_url('sqlite://')
    repo = CountingRepository(base.engine, use_external_id=True)
    assert repo.ensure_schema()
    yield repo
    repo.close()


@pytest.fixture
def executor():
    return ManualExecutor()


@pytest.fixture
def foreground():
    loop = ForegroundLoop()
    # The test thread plays the foreground thread
    loop.bind()
    return loop


@pytest.fixture
def tracker(repository, executor, foreground):
    settings = SchedulerConfig(worker_threads=1, save_interval=3600, toplist_interval=3600,
                               top_type='kills', top_items=3)
    return build_tracker(repository, settings, foreground, executor=executor)


@pytest.fixture
def settle(executor, foreground):
    """Run background work and deliver its callbacks until nothing is left"""
    def run():
        while executor.run_all() or foreground.run_pending():
            pass
    return run
