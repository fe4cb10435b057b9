import os
from dataclasses import dataclass


def _env_bool(name: str, default: str = 'false') -> bool:
    return os.environ.get(name, default).lower() in ('1', 'true', 'yes')


@dataclass
class Config:
    """Configuration for the PvP stats tracker"""

    # Flask settings
    HOST: str = os.environ.get('STATS_HOST', '127.0.0.1')
    PORT: int = int(os.environ.get('STATS_PORT', '5002'))
    DEBUG: bool = _env_bool('FLASK_DEBUG')

    # Paths
    BASE_DIR: str = os.path.dirname(os.path.abspath(__file__))
    DATA_DIR: str = os.environ.get('STATS_DATA_DIR', os.path.join(BASE_DIR, 'data'))
    LOG_DIR: str = os.environ.get('STATS_LOG_DIR', os.path.join(BASE_DIR, 'logs'))

    # Database
    # Empty means the bundled SQLite file (see DATABASE_URL property)
    DATABASE_URL_OVERRIDE: str = os.environ.get('STATS_DATABASE_URL', '')
    POOL_SIZE: int = int(os.environ.get('STATS_POOL_SIZE', '5'))
    # Look players up by their stable id instead of their display name
    USE_EXTERNAL_ID: bool = _env_bool('STATS_USE_EXTERNAL_ID', 'true')

    # Background work
    WORKER_THREADS: int = int(os.environ.get('STATS_WORKER_THREADS', '4'))
    SAVE_INTERVAL: float = float(os.environ.get('STATS_SAVE_INTERVAL', '60'))        # seconds between sweeps
    TOPLIST_INTERVAL: float = float(os.environ.get('STATS_TOPLIST_INTERVAL', '300'))  # seconds between leaderboard refreshes

    # Leaderboard
    TOP_TYPE: str = os.environ.get('STATS_TOP_TYPE', 'kills')  # 'kills', 'mob', 'killstreak'
    TOP_ITEMS: int = int(os.environ.get('STATS_TOP_ITEMS', '5'))

    @property
    def DATABASE_URL(self) -> str:
        if self.DATABASE_URL_OVERRIDE:
            return self.DATABASE_URL_OVERRIDE
        return f'sqlite:///{os.path.join(self.DATA_DIR, "stats.db")}'

    def __post_init__(self):
        """Ensure directories exist"""
        os.makedirs(self.DATA_DIR, exist_ok=True)
        os.makedirs(self.LOG_DIR, exist_ok=True)


# Create global config instance
config = Config()
