"""
Tests for configuration sources.
"""

from __future__ import annotations

import json

from nps.core.settings import DEFAULT_RULESET_PATH, Settings


def test_defaults(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    settings = Settings(_env_file=None)

    assert settings.work_queue == "work"
    assert settings.queue_max_retries == 3
    assert settings.queue_lease_timeout_seconds == 300
    assert settings.queue_reap_interval_seconds == 1800
    assert settings.scanner_processes == 1
    assert settings.reporter_processes == 1
    assert settings.enable_ui is False
    assert settings.plugins == ["grep"]
    assert settings.ruleset_path == str(DEFAULT_RULESET_PATH)


def test_environment_overrides(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("NPS_WORK_QUEUE", "archives")
    monkeypatch.setenv("NPS_SCANNER_PROCESSES", "4")
    monkeypatch.setenv("NPS_PLUGINS", "grep, custom")
    monkeypatch.setenv("REDIS_URL", "redis://queue:6379/2")

    settings = Settings(_env_file=None)

    assert settings.work_queue == "archives"
    assert settings.scanner_processes == 4
    assert settings.plugins == ["grep", "custom"]
    assert settings.redis_url == "redis://queue:6379/2"


def test_json_config_file(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "config.json").write_text(json.dumps({"result_queue": "findings", "staging_path": "/srv/staging"}))

    settings = Settings(_env_file=None)

    assert settings.result_queue == "findings"
    assert settings.staging_path == "/srv/staging"


def test_environment_beats_config_file(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "config.json").write_text(json.dumps({"result_queue": "findings"}))
    monkeypatch.setenv("NPS_RESULT_QUEUE", "from-env")

    assert Settings(_env_file=None).result_queue == "from-env"


def test_database_url_from_postgres_fields(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("NPS_DATABASE_URL", raising=False)
    settings = Settings(_env_file=None, postgres_host="db", postgres_database="scans")

    assert settings.database_url == "postgresql+asyncpg://postgres:postgres@db:5432/scans"


def test_database_url_override(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///nps.db")

    assert Settings(_env_file=None).database_url == "sqlite+aiosqlite:///nps.db"
