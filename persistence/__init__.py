"""
Persistence Module

Database storage for player PvP stats:
- Player records (kills, deaths, aux kills, streak, last seen)
- Batched saving with generated-id back-fill
- Leaderboard queries
"""

from .models import PlayerStatsRow, LEADERBOARD_COLUMNS
from .record import StatsRecord
from .database import create_data_source, session_scope, is_embedded
from .stats_repository import StatsRepository

__all__ = [
    # Models
    'PlayerStatsRow',
    'LEADERBOARD_COLUMNS',
    'StatsRecord',
    # Database
    'create_data_source',
    'session_scope',
    'is_embedded',
    # Repository
    'StatsRepository',
]
