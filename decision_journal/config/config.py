"""Application-wide configuration helpers."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List

_ENV_COMMENT_PREFIX = '#'


def _load_env_file(path: Path) -> Dict[str, str]:
    """Load simple KEY=VALUE pairs from a .env style file if it exists."""
    if not path.exists():
        return {}

    values: Dict[str, str] = {}
    for raw_line in path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith(_ENV_COMMENT_PREFIX):
            continue
        if '=' not in line:
            continue
        key, value = line.split('=', 1)
        values[key.strip()] = value.strip().strip('"').strip("\'")
    return values


def _merge_env(sources: Iterable[Dict[str, str]]) -> Dict[str, str]:
    merged: Dict[str, str] = {}
    for source in sources:
        merged.update(source)
    return merged


def _split_ids(value: str) -> List[str]:
    return [item.strip() for item in value.split(',') if item.strip()]


@dataclass
class Settings:
    """Container for application level settings.

    Values are resolved from (in order): process environment, `.env` file,
    and finally the provided defaults.
    """

    database_url: str = 'sqlite:///data/decision_journal.db'
    data_directory: Path = field(default_factory=lambda: Path('data'))
    log_level: str = 'INFO'
    trader_ids: List[str] = field(default_factory=list)
    oi_cache_path: Path = field(default_factory=lambda: Path('data/oi-history.json'))
    oi_retention_hours: float = 72.0
    legacy_log_directory: Path = field(default_factory=lambda: Path('decision_logs'))
    performance_window: int = 1000
    api_host: str = '127.0.0.1'
    api_port: int = 8000

    @classmethod
    def from_env(cls, env_file: str | Path = '.env') -> 'Settings':
        env_path = Path(env_file)
        env_file_values = _load_env_file(env_path)
        merged = _merge_env([env_file_values, dict(os.environ)])

        kwargs = {
            'database_url': merged.get('DATABASE_URL', cls.database_url),
            'data_directory': Path(merged.get('DATA_DIRECTORY', 'data')),
            'log_level': merged.get('LOG_LEVEL', cls.log_level),
            'trader_ids': _split_ids(merged.get('TRADER_IDS', '')),
            'oi_cache_path': Path(merged.get('OI_CACHE_PATH', 'data/oi-history.json')),
            'oi_retention_hours': float(merged.get('OI_RETENTION_HOURS', cls.oi_retention_hours)),
            'legacy_log_directory': Path(merged.get('LEGACY_LOG_DIRECTORY', 'decision_logs')),
            'performance_window': int(merged.get('PERFORMANCE_WINDOW', cls.performance_window)),
            'api_host': merged.get('API_HOST', cls.api_host),
            'api_port': int(merged.get('API_PORT', cls.api_port)),
        }
        settings = cls(**kwargs)
        settings.ensure_directories()
        return settings

    def ensure_directories(self) -> None:
        """Create required directories if they are missing."""
        self.data_directory = Path(self.data_directory)
        self.data_directory.mkdir(parents=True, exist_ok=True)
        self.oi_cache_path = Path(self.oi_cache_path)
        self.oi_cache_path.parent.mkdir(parents=True, exist_ok=True)


load_settings = Settings.from_env

__all__ = ['Settings', 'load_settings']
