"""
Session Cache

Write-back cache of stats records for the players that are currently online.

All public methods run on the foreground thread and never block: loads and
saves are handed to the persistence scheduler, and their results come back
through the foreground loop.

Lifecycle of a session key:
    absent -> loading (load scheduled) -> attached (record present) -> detached
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Set, TYPE_CHECKING

from persistence.record import StatsRecord

if TYPE_CHECKING:
    from engine.foreground import ForegroundLoop
    from engine.scheduler import PersistenceScheduler
    from persistence.stats_repository import StatsRepository

logger = logging.getLogger(__name__)


@dataclass
class PlayerSession:
    """An online player as seen by the session-lifecycle code"""
    session_id: str
    display_name: str
    external_id: Optional[str] = None


class SessionCache:
    """
    Registry of active sessions and their attached records.

    Owned by the foreground thread. Workers reach it only through
    ForegroundLoop.submit/call.
    """

    def __init__(self, repository: 'StatsRepository', scheduler: 'PersistenceScheduler',
                 foreground: 'ForegroundLoop'):
        self._repository = repository
        self._scheduler = scheduler
        self._foreground = foreground

        self._sessions: Dict[str, PlayerSession] = {}
        self._records: Dict[str, StatsRecord] = {}
        self._loading: Set[str] = set()
        # Quit records whose save has not finished, by lookup key
        self._departed: Dict[str, StatsRecord] = {}

    # =========================================================================
    # Sessions
    # =========================================================================

    def open_session(self, session: PlayerSession) -> None:
        """Register a player as online. Re-opening keeps an attached record."""
        self._sessions[session.session_id] = session

    @property
    def persistence_enabled(self) -> bool:
        return self._repository.enabled

    def active_keys(self) -> List[str]:
        return list(self._sessions)

    # =========================================================================
    # Lookups
    # =========================================================================

    def get(self, key: str) -> Optional[StatsRecord]:
        """Cached record for a session, None if not loaded (yet)"""
        return self._records.get(key)

    def is_loading(self, key: str) -> bool:
        return key in self._loading

    def dirty_records(self) -> List[StatsRecord]:
        """Every attached record with unsaved changes"""
        return [record for record in self._records.values() if record.is_modified]

    def unsaved_records(self) -> List[StatsRecord]:
        """Dirty attached records plus quit records whose save did not go through"""
        departed = [record for record in self._departed.values() if record.is_modified]
        return self.dirty_records() + departed

    def __len__(self) -> int:
        return len(self._records)

    # =========================================================================
    # Loading
    # =========================================================================

    def request_load(self, key: str) -> bool:
        """
        Start loading the record for an active session in the background.

        Does nothing if a record is attached, a load is already running for
        this key, the session isn't active or persistence is disabled. A
        record still waiting on its quit save is reattached right away.

        Returns:
            True if a load was scheduled
        """
        session = self._sessions.get(key)
        if session is None or key in self._records or key in self._loading:
            return False

        lookup = self._lookup(session)
        departed = self._departed.pop(lookup, None) if lookup is not None else None
        if departed is not None:
            # The quit save may not have reached the store yet, a lookup would miss it
            logger.debug(f"Reusing unsaved stats for {session.display_name}")
            self._attach(key, departed)
            return False

        if not self._repository.enabled:
            return False

        self._loading.add(key)
        self._scheduler.run_async(self._load_worker, key, lookup)
        return True

    def _lookup(self, session: PlayerSession) -> Optional[str]:
        return session.external_id if self._repository.use_external_id else session.display_name

    def _load_worker(self, key: str, lookup: Optional[str]) -> None:
        """Runs on a worker thread"""
        record = None
        try:
            record = self._repository.load_one(lookup)
        finally:
            # Always report back, so the key never stays stuck in "loading"
            self._foreground.submit(self._attach, key, record)

    def _attach(self, key: str, record: Optional[StatsRecord]) -> None:
        """Runs on the foreground thread once a load finished"""
        self._loading.discard(key)

        session = self._sessions.get(key)
        if session is None:
            logger.debug(f"Discarding stats for {key}, session already ended")
            return
        if record is None:
            logger.warning(f"Could not load stats for {session.display_name}")
            return
        if key in self._records:
            return

        if record.is_new:
            record.bind_identity(session.external_id, session.display_name)
        else:
            # Player may have changed their name since the last save
            record.display_name = session.display_name
            record.mark_seen()

        self._records[key] = record
        logger.debug(f"Attached stats for {session.display_name}: {record}")

    # =========================================================================
    # Saving / detaching
    # =========================================================================

    def mark_dirty_and_save(self, record: Optional[StatsRecord]) -> None:
        """Mark a record modified and save it in the background"""
        if record is None:
            return
        record.mark_modified()
        self._scheduler.save_async(record)

    def detach(self, key: str) -> Optional[StatsRecord]:
        """Forget a session and return its record, if one was attached"""
        self._sessions.pop(key, None)
        # An in-flight load keeps its marker until it reports back and gets discarded,
        # so a quick rejoin reuses it instead of starting a second one
        return self._records.pop(key, None)

    def release(self, key: str) -> Optional[StatsRecord]:
        """
        End a session: detach its record, touch it and save it in the background.

        Until that save finished, a rejoin under the same lookup key gets the
        same record back instead of loading a stale copy from the store.
        """
        session = self._sessions.get(key)
        record = self.detach(key)
        if record is None:
            return None

        record.touch()
        if not record.is_modified:
            return record

        future = self._scheduler.save_async(record)
        lookup = self._lookup(session) if session is not None else None
        if future is not None and lookup is not None:
            self._departed[lookup] = record
            future.add_done_callback(
                lambda _: self._foreground.submit(self._save_finished, lookup, record))
        return record

    def _save_finished(self, lookup: str, record: StatsRecord) -> None:
        """Runs on the foreground thread after a quit save"""
        # A failed save keeps the record around for a rejoin or the shutdown flush
        if self._departed.get(lookup) is record and not record.is_modified:
            del self._departed[lookup]

    def clear(self) -> None:
        """Drop every session and attachment"""
        self._sessions.clear()
        self._loading.clear()
        self._records.clear()
        self._departed.clear()
