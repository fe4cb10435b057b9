"""
Stats Record

In-memory counters for one player. The cache hands these out to the
foreground; the repository reads snapshots of them on worker threads.

A record is "new" until the store assigned it an id, and "modified" while it
holds changes that have not been persisted yet.
"""

import threading
import time
from typing import Any, Dict, Optional, Tuple


def now_millis() -> int:
    return int(time.time() * 1000)


class StatsRecord:
    """Counters for one player plus dirty/new tracking"""

    def __init__(self, display_name: Optional[str] = None, external_id: Optional[str] = None,
                 id: Optional[int] = None, kills: int = 0, deaths: int = 0,
                 aux_kills: int = 0, streak: int = 0, last_seen: int = 0):
        self._id = id
        self._external_id = external_id
        self._display_name = display_name

        self._kills = kills
        self._deaths = deaths
        self._aux_kills = aux_kills
        self._streak = streak
        self._last_seen = last_seen

        self._modified = False
        self._flag_lock = threading.Lock()
        # Bumped on every change, so a save can tell whether it persisted the latest state
        self._version = 0

    def __repr__(self):
        state = "new" if self.is_new else f"id={self._id}"
        return f"<StatsRecord({self._display_name} {state}: {self._kills}K/{self._deaths}D)>"

    # =========================================================================
    # Flags
    # =========================================================================

    @property
    def is_new(self) -> bool:
        return self._id is None

    @property
    def is_modified(self) -> bool:
        return self._modified

    def mark_modified(self) -> None:
        with self._flag_lock:
            self._modified = True
            self._version += 1

    def mark_persisted(self, version: int) -> bool:
        """
        Clear the modified flag after a successful save.

        Args:
            version: The version captured when the saved snapshot was taken

        Returns:
            True if the flag was cleared, False if the record changed again
            while the save was in flight.
        """
        with self._flag_lock:
            if version != self._version:
                return False
            self._modified = False
            return True

    # =========================================================================
    # Identity
    # =========================================================================

    @property
    def id(self) -> Optional[int]:
        return self._id

    def assign_id(self, new_id: int) -> None:
        """Set the store-generated id. Can only happen once."""
        if self._id is not None:
            raise ValueError(f"Record already has id {self._id}")
        self._id = new_id

    @property
    def external_id(self) -> Optional[str]:
        return self._external_id

    @property
    def display_name(self) -> Optional[str]:
        return self._display_name

    @display_name.setter
    def display_name(self, value: str) -> None:
        if value != self._display_name:
            self._display_name = value
            self.mark_modified()

    def bind_identity(self, external_id: Optional[str], display_name: str) -> None:
        """Fill in the identity of a fresh record without marking it modified"""
        self._external_id = external_id
        self._display_name = display_name
        self.mark_seen()

    # =========================================================================
    # Counters
    # =========================================================================

    def _set_counter(self, attr: str, value: int) -> None:
        if value < 0:
            raise ValueError(f"{attr.lstrip('_')} cannot be negative: {value}")
        if getattr(self, attr) != value:
            setattr(self, attr, value)
            self.mark_modified()

    @property
    def kills(self) -> int:
        return self._kills

    @kills.setter
    def kills(self, value: int) -> None:
        self._set_counter('_kills', value)

    @property
    def deaths(self) -> int:
        return self._deaths

    @deaths.setter
    def deaths(self, value: int) -> None:
        self._set_counter('_deaths', value)

    @property
    def aux_kills(self) -> int:
        return self._aux_kills

    @aux_kills.setter
    def aux_kills(self, value: int) -> None:
        self._set_counter('_aux_kills', value)

    @property
    def streak(self) -> int:
        return self._streak

    @streak.setter
    def streak(self, value: int) -> None:
        self._set_counter('_streak', value)

    @property
    def last_seen(self) -> int:
        return self._last_seen

    def mark_seen(self, timestamp: Optional[int] = None) -> None:
        """Move last_seen forward without marking the record modified"""
        if timestamp is None:
            timestamp = now_millis()
        self._last_seen = max(self._last_seen, timestamp)

    def touch(self, timestamp: Optional[int] = None) -> None:
        """Move last_seen forward. Older timestamps are ignored."""
        if timestamp is None:
            timestamp = now_millis()
        if timestamp > self._last_seen:
            self._last_seen = timestamp
            self.mark_modified()

    def on_kill(self) -> None:
        self.kills = self._kills + 1
        self.streak = self._streak + 1

    def on_death(self) -> None:
        self.deaths = self._deaths + 1
        self.streak = 0

    def on_aux_kill(self) -> None:
        self.aux_kills = self._aux_kills + 1

    @property
    def kdr(self) -> float:
        """Kill/death ratio, treating zero deaths as one"""
        return round(self._kills / max(self._deaths, 1), 2)

    # =========================================================================
    # Persistence helpers
    # =========================================================================

    def snapshot(self) -> Tuple[Dict[str, Any], int]:
        """Column values plus the version they belong to"""
        # Read the version first: a concurrent change then leaves the record dirty
        version = self._version
        values = {
            'external_id': self._external_id,
            'display_name': self._display_name,
            'kills': self._kills,
            'deaths': self._deaths,
            'aux_kills': self._aux_kills,
            'streak': self._streak,
            'last_seen': self._last_seen,
        }
        return values, version

    @classmethod
    def from_row(cls, row) -> 'StatsRecord':
        return cls(
            display_name=row.display_name,
            external_id=row.external_id,
            id=row.id,
            kills=row.kills,
            deaths=row.deaths,
            aux_kills=row.aux_kills,
            streak=row.streak,
            last_seen=row.last_seen,
        )

    def to_dict(self) -> Dict[str, Any]:
        values, _ = self.snapshot()
        values['id'] = self._id
        values['kdr'] = self.kdr
        return values
