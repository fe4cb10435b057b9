"""
Stats Repository - Data Access Layer

Owns the pooled connection to the stats database and runs every query the
tracker needs:
- Schema creation
- Loading one player's record
- Batched saving (update existing rows, insert new ones)
- Leaderboard queries

Every method catches database errors, logs them and returns an empty result,
so a database outage never takes the tracker down with it.
"""

import logging
import threading
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select, update, desc
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .database import create_data_source, create_session_factory, session_scope
from .models import Base, PlayerStatsRow, LEADERBOARD_COLUMNS
from .record import StatsRecord

logger = logging.getLogger(__name__)


class StatsRepository:
    """
    Repository for all player stats operations.

    The repository is "enabled" while it has a usable engine. It becomes
    disabled when the engine cannot be built, the schema cannot be created,
    or after close().
    """

    def __init__(self, engine: Optional[Engine] = None, use_external_id: bool = True):
        """
        Initialize repository.

        Args:
            engine: Ready-to-use pooled engine. None runs without persistence.
            use_external_id: Look players up by external id instead of display name
        """
        self._engine = engine
        self._factory = create_session_factory(engine) if engine is not None else None
        self.use_external_id = use_external_id
        # Serializes all writes, so two saves of the same record never interleave
        self._write_lock = threading.Lock()

    @classmethod
    def from_url(cls, database_url: str, pool_size: int = 5,
                 use_external_id: bool = True) -> 'StatsRepository':
        """Build the engine from a URL. A broken URL or driver yields a disabled repository."""
        try:
            engine = create_data_source(database_url, pool_size=pool_size)
        except (SQLAlchemyError, ImportError) as e:
            logger.error(f"Could not create data source, running without persistence: {e}")
            engine = None
        return cls(engine, use_external_id=use_external_id)

    @property
    def enabled(self) -> bool:
        return self._engine is not None

    @property
    def engine(self) -> Optional[Engine]:
        return self._engine

    def ensure_schema(self) -> bool:
        """
        Create the player_stats table if it doesn't exist.

        Returns:
            True if the schema is usable. On failure the engine is disposed
            and the repository stays disabled.
        """
        if not self.enabled:
            return False

        try:
            Base.metadata.create_all(self._engine)
            logger.info("Player stats schema ready")
            return True
        except SQLAlchemyError as e:
            logger.critical(f"Error creating player stats table, disabling persistence: {e}", exc_info=True)
            self.close()
            return False

    def close(self) -> None:
        """Dispose the connection pool. Persistence is disabled afterwards."""
        engine = self._engine
        self._engine = None
        self._factory = None
        if engine is not None:
            try:
                engine.dispose()
                logger.info("Stats database connection closed")
            except Exception as e:
                logger.debug(f"Ignoring error while closing connection pool: {e}")

    # =========================================================================
    # Loading
    # =========================================================================

    def load_one(self, key: Optional[str]) -> Optional[StatsRecord]:
        """
        Load the record for a player.

        Args:
            key: External id or display name, depending on use_external_id

        Returns:
            The stored record, a fresh record with zero counters if the player
            has no row yet, or None if the key is missing, persistence is
            disabled or the query failed.
        """
        factory = self._factory
        if key is None or factory is None:
            return None

        column = PlayerStatsRow.external_id if self.use_external_id else PlayerStatsRow.display_name
        try:
            with session_scope(factory, "load") as session:
                row = session.execute(
                    select(PlayerStatsRow).where(column == str(key)).limit(1)
                ).scalar_one_or_none()

                if row is None:
                    return StatsRecord()
                return StatsRecord.from_row(row)
        except SQLAlchemyError as e:
            logger.error(f"Error loading player profile for {key}: {e}", exc_info=True)
            return None

    # =========================================================================
    # Saving
    # =========================================================================

    def save_batch(self, records: Iterable[Optional[StatsRecord]]) -> int:
        """
        Persist every modified record in the batch.

        Records that already have an id are updated in one batch; new records
        are inserted and get their generated id assigned. Unmodified records
        are skipped.

        Returns:
            Number of records written
        """
        if records is None or not self.enabled:
            return 0

        dirty = [r for r in records if r is not None and r.is_modified]
        if not dirty:
            return 0

        with self._write_lock:
            # Decide under the lock: an insert by a concurrent save changes is_new
            existing = [r for r in dirty if not r.is_new and r.is_modified]
            fresh = [r for r in dirty if r.is_new and r.is_modified]

            written = 0
            if existing:
                written += self._update(existing)
            if fresh:
                written += self._insert(fresh)
            return written

    def _update(self, records: List[StatsRecord]) -> int:
        factory = self._factory
        if factory is None:
            return 0

        snapshots = []
        params = []
        for record in records:
            values, version = record.snapshot()
            values['id'] = record.id
            snapshots.append((record, version))
            params.append(values)

        try:
            with session_scope(factory, "update") as session:
                # executemany of UPDATE ... WHERE id=:id
                session.execute(update(PlayerStatsRow), params)
        except SQLAlchemyError as e:
            logger.error(f"Error updating {len(records)} profiles: {e}", exc_info=True)
            return 0

        for record, version in snapshots:
            record.mark_persisted(version)
        logger.debug(f"Updated {len(records)} player profiles")
        return len(records)

    def _insert(self, records: List[StatsRecord]) -> int:
        factory = self._factory
        if factory is None:
            return 0

        pending = []
        for record in records:
            values, version = record.snapshot()
            pending.append((record, PlayerStatsRow(**values), version))

        try:
            with session_scope(factory, "insert") as session:
                session.add_all([row for _, row, _ in pending])
                # Flush fills row.id on each row object, so ids never depend on result order
                session.flush()
        except SQLAlchemyError as e:
            logger.error(f"Error inserting {len(records)} profiles: {e}", exc_info=True)
            return 0

        # Only assign ids once the transaction has committed
        for record, row, version in pending:
            record.assign_id(row.id)
            record.mark_persisted(version)
        logger.debug(f"Inserted {len(records)} player profiles")
        return len(records)

    # =========================================================================
    # Leaderboard
    # =========================================================================

    def top_list(self, metric: str = 'kills', limit: int = 5) -> Dict[str, int]:
        """
        Get the best players for a metric.

        Args:
            metric: 'kills', 'aux_kills' or 'streak' (aliases 'mob', 'mobkills',
                    'killstreak'). Unknown metrics fall back to kills.
            limit: Maximum number of entries

        Returns:
            Dict of display name -> value, ordered best first
        """
        factory = self._factory
        if factory is None or limit <= 0:
            return {}

        column = LEADERBOARD_COLUMNS.get(metric)
        if column is None:
            logger.warning(f"Unknown leaderboard metric '{metric}', using kills")
            column = PlayerStatsRow.kills

        try:
            with session_scope(factory, "top list") as session:
                rows = session.execute(
                    select(PlayerStatsRow.display_name, column)
                    .order_by(desc(column), PlayerStatsRow.id)
                    .limit(limit)
                ).all()
        except SQLAlchemyError as e:
            logger.error(f"Error loading top list for {metric}: {e}", exc_info=True)
            return {}

        result: Dict[str, int] = {}
        for name, value in rows:
            # Rows are sorted, so a repeated name keeps its best value
            if name not in result:
                result[name] = value
        return result
