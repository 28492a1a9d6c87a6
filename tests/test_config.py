"""Tests for :mod:`decision_journal.config.config`."""

from __future__ import annotations

from pathlib import Path

from decision_journal.config import Settings


def test_settings_merge_env_file_and_environment(tmp_path, monkeypatch) -> None:
    env_file = tmp_path / '.env'
    env_file.write_text(
        '# journal settings\n'
        f'DATA_DIRECTORY={tmp_path / "data"}\n'
        f'OI_CACHE_PATH={tmp_path / "cache" / "oi.json"}\n'
        'TRADER_IDS=deepseek_trader, qwen_trader\n'
        'PERFORMANCE_WINDOW=250\n'
        'API_PORT="9000"\n'
    )
    monkeypatch.setenv('API_PORT', '9100')
    for key in ('TRADER_IDS', 'PERFORMANCE_WINDOW', 'DATA_DIRECTORY', 'OI_CACHE_PATH', 'OI_RETENTION_HOURS'):
        monkeypatch.delenv(key, raising=False)

    settings = Settings.from_env(env_file)

    assert settings.trader_ids == ['deepseek_trader', 'qwen_trader']
    assert settings.performance_window == 250
    assert settings.api_port == 9100
    assert settings.oi_retention_hours == 72.0
    assert (tmp_path / 'data').is_dir()
    assert (tmp_path / 'cache').is_dir()


def test_defaults_without_env_file(tmp_path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    for key in ('DATABASE_URL', 'TRADER_IDS', 'PERFORMANCE_WINDOW', 'DATA_DIRECTORY', 'OI_CACHE_PATH', 'LEGACY_LOG_DIRECTORY'):
        monkeypatch.delenv(key, raising=False)

    settings = Settings.from_env(tmp_path / 'missing.env')

    assert settings.database_url == 'sqlite:///data/decision_journal.db'
    assert settings.trader_ids == []
    assert settings.performance_window == 1000
    assert settings.data_directory == Path('data')
    assert settings.legacy_log_directory == Path('decision_logs')
