"""
Stats Tracker

Entry point for the code that knows about players: joins, quits and combat
events come in here and are turned into cache and counter operations.

Every method must be called on the foreground thread.
"""

import logging
from typing import Optional, TYPE_CHECKING

from engine.session_cache import PlayerSession

if TYPE_CHECKING:
    from engine.leaderboard import LeaderboardView
    from engine.scheduler import PersistenceScheduler
    from engine.session_cache import SessionCache
    from persistence.record import StatsRecord

logger = logging.getLogger(__name__)


class StatsTracker:
    """
    Session lifecycle and counter updates on top of the session cache.

    Usage:
        tracker.on_join(PlayerSession("s1", "Alice", "uuid-1"))
        tracker.on_kill(killer_id="s1", victim_id="s2")
        tracker.on_quit("s1")
    """

    def __init__(self, cache: 'SessionCache', scheduler: 'PersistenceScheduler',
                 leaderboard: 'LeaderboardView'):
        self.cache = cache
        self.scheduler = scheduler
        self.leaderboard = leaderboard

    # =========================================================================
    # Session lifecycle
    # =========================================================================

    def on_join(self, session: PlayerSession) -> bool:
        """
        A player came online. Starts loading their stats.

        Returns:
            True if a load was scheduled
        """
        self.cache.open_session(session)
        scheduled = self.cache.request_load(session.session_id)
        if scheduled:
            logger.debug(f"Loading stats for {session.display_name}")
        return scheduled

    def on_quit(self, session_id: str) -> Optional['StatsRecord']:
        """
        A player went offline. Their record is detached and saved in the
        background if it has unsaved changes.
        """
        return self.cache.release(session_id)

    def stats_for(self, session_id: str) -> Optional['StatsRecord']:
        """Cached stats for display, None while still loading"""
        return self.cache.get(session_id)

    # =========================================================================
    # Counter updates
    # =========================================================================

    def on_kill(self, killer_id: Optional[str], victim_id: str) -> None:
        """
        A player was killed, possibly by another player.

        The victim's death always counts. The killer only gets the kill if it's
        another player; killing yourself just ends your streak.
        """
        victim = self.cache.get(victim_id)
        if victim is not None:
            victim.on_death()
        else:
            logger.debug(f"No stats loaded for victim {victim_id}, death not counted")

        if killer_id is None or killer_id == victim_id:
            return

        killer = self.cache.get(killer_id)
        if killer is not None:
            killer.on_kill()
        else:
            logger.debug(f"No stats loaded for killer {killer_id}, kill not counted")

    def on_death(self, victim_id: str) -> None:
        """A player died without a killer (fall damage, lava, ...)"""
        self.on_kill(None, victim_id)

    def on_aux_kill(self, killer_id: str) -> None:
        """A player killed a non-player entity"""
        killer = self.cache.get(killer_id)
        if killer is not None:
            killer.on_aux_kill()

    # =========================================================================
    # Startup / shutdown
    # =========================================================================

    def start(self) -> None:
        """Start the periodic sweep and leaderboard refresh"""
        self.scheduler.start()

    def shutdown(self) -> int:
        """Flush everything and close the database (foreground thread)"""
        return self.scheduler.shutdown()
