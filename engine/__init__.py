"""
Engine Package

Runtime side of the stats tracker: the foreground loop owning session state,
the write-back session cache, background persistence and the leaderboard.
"""

from .foreground import ForegroundLoop
from .leaderboard import LeaderboardView
from .scheduler import PersistenceScheduler, SchedulerConfig, PeriodicTask
from .session_cache import SessionCache, PlayerSession
from .stats_tracker import StatsTracker

__all__ = [
    'ForegroundLoop',
    'LeaderboardView',
    'PersistenceScheduler',
    'SchedulerConfig',
    'PeriodicTask',
    'SessionCache',
    'PlayerSession',
    'StatsTracker',
    'build_tracker',
]


def build_tracker(repository, settings: SchedulerConfig = None, foreground: ForegroundLoop = None,
                  executor=None) -> StatsTracker:
    """Wire repository, cache, scheduler and leaderboard into a tracker"""
    settings = settings or SchedulerConfig()
    foreground = foreground or ForegroundLoop()
    leaderboard = LeaderboardView(settings.top_type, settings.top_items)
    scheduler = PersistenceScheduler(repository, foreground, leaderboard, settings, executor=executor)
    cache = SessionCache(repository, scheduler, foreground)
    scheduler.bind_cache(cache)
    return StatsTracker(cache, scheduler, leaderboard)
