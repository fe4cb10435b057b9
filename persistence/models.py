"""
Database Models for the PvP Stats Tracker

Tracks one row per player:
- Identity (surrogate id, optional external id, display name)
- Kill/death counters and the current kill streak
- Last time the player was seen online
"""

from sqlalchemy import Column, Integer, BigInteger, String, Index
from sqlalchemy.orm import declarative_base

Base = declarative_base()

# SQLite only auto-generates ids for a plain INTEGER PRIMARY KEY
IdType = BigInteger().with_variant(Integer(), 'sqlite')


class PlayerStatsRow(Base):
    """
    Persisted counters for a single player.

    Rows are only ever written from StatsRecord instances; the cache works
    with records, never with rows directly.
    """
    __tablename__ = 'player_stats'

    id = Column(IdType, primary_key=True, autoincrement=True)
    external_id = Column(String(40), unique=True)
    display_name = Column(String(32), nullable=False)

    kills = Column(Integer, nullable=False, default=0)
    deaths = Column(Integer, nullable=False, default=0)
    aux_kills = Column(Integer, nullable=False, default=0)
    streak = Column(Integer, nullable=False, default=0)

    # Epoch milliseconds
    last_seen = Column(BigInteger, nullable=False, default=0)

    __table_args__ = (
        Index('idx_player_stats_name', 'display_name'),
    )

    def __repr__(self):
        return f"<PlayerStatsRow({self.display_name}: {self.kills}K/{self.deaths}D)>"


# Leaderboard metrics and the column each one sorts by.
# Aliases match the names used by older configs.
LEADERBOARD_COLUMNS = {
    'kills': PlayerStatsRow.kills,
    'aux_kills': PlayerStatsRow.aux_kills,
    'mob': PlayerStatsRow.aux_kills,
    'mobkills': PlayerStatsRow.aux_kills,
    'streak': PlayerStatsRow.streak,
    'killstreak': PlayerStatsRow.streak,
}
