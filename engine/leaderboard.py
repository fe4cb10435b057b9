"""
Leaderboard View

Latest top-N snapshot for one metric. The scheduler rebuilds it from the
database on a timer; display code only ever reads copies.
"""

import logging
import threading
from typing import Dict, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)


class LeaderboardView:
    """Top-N mapping of display name -> value, swapped wholesale under one lock"""

    def __init__(self, metric: str = 'kills', size: int = 5):
        self.metric = metric
        self.size = size
        self._lock = threading.Lock()
        self._entries: Dict[str, int] = {}

    def replace(self, entries: Mapping[str, int]) -> None:
        """Swap in a freshly computed mapping"""
        # Build outside the lock so readers are only blocked for the swap
        fresh = dict(list(entries.items())[:self.size])
        with self._lock:
            self._entries = fresh
        logger.debug(f"Leaderboard ({self.metric}) refreshed with {len(fresh)} entries")

    def snapshot(self) -> List[Tuple[str, int]]:
        """Current entries, best first"""
        with self._lock:
            entries = self._entries
        # The mapping is never mutated after the swap, so sorting outside the lock is safe
        return sorted(entries.items(), key=lambda item: item[1], reverse=True)

    def get(self, name: str) -> Optional[int]:
        with self._lock:
            return self._entries.get(name)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
