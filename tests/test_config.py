from pathlib import Path

import pytest

from domainwatch.config import load_settings, settings_from_mapping
from domainwatch.errors import ConfigError


def test_toml_values_and_defaults():
    raw = {
        "worker": {"concurrency": 8, "poll_interval_ms": 250},
        "retry": {"delay_ms": 500},
        "storage": {"database_path": "data/test.db"},
        "logging": {"level": "debug"},
    }

    settings = settings_from_mapping(raw, environ={})

    assert settings.concurrency == 8
    assert settings.poll_interval_seconds == 0.25
    assert settings.retry_delay_ms == 500
    assert settings.max_attempts == 3
    assert settings.backoff_multiplier == 2.0
    assert settings.database_path == Path("data/test.db")
    assert settings.log_level == "DEBUG"
    assert settings.respect_robots_txt is True
    assert settings.worker_id.startswith("worker-")
    assert settings.ruleset is None


def test_environment_overrides_file_values():
    raw = {"worker": {"concurrency": 8}, "storage": {"database_path": "from-file.db"}}
    environ = {
        "WORKER_CONCURRENCY": "3",
        "DATABASE_PATH": "/tmp/from-env.db",
        "WORKER_ID": "worker-env",
        "HEALTH_CHECK_PORT": "4010",
        "RULESET": "dhaka",
    }

    settings = settings_from_mapping(raw, environ=environ)

    assert settings.concurrency == 3
    assert settings.database_path == Path("/tmp/from-env.db")
    assert settings.worker_id == "worker-env"
    assert settings.health_port == 4010
    assert settings.ruleset == "dhaka"


@pytest.mark.parametrize(
    "value, expected",
    [("false", False), ("FALSE", False), ("true", True), ("0", True), ("no", True)],
)
def test_only_explicit_false_disables_robots(value, expected):
    settings = settings_from_mapping({}, environ={"DATABASE_PATH": "x.db", "RESPECT_ROBOTS_TXT": value})
    assert settings.respect_robots_txt is expected


def test_missing_database_path_is_fatal():
    with pytest.raises(ConfigError, match="DATABASE_PATH"):
        settings_from_mapping({"worker": {"concurrency": 2}}, environ={})


def test_invalid_values_raise_config_error():
    with pytest.raises(ConfigError):
        settings_from_mapping({}, environ={"DATABASE_PATH": "x.db", "WORKER_CONCURRENCY": "0"})
    with pytest.raises(ConfigError):
        settings_from_mapping({}, environ={"DATABASE_PATH": "x.db", "LOG_LEVEL": "chatty"})


def test_load_settings_reads_toml_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    path = tmp_path / "settings.toml"
    path.write_text('[storage]\ndatabase_path = "queue.db"\n\n[fetch]\nmax_redirects = 2\n', encoding="utf-8")

    settings = load_settings(path, environ={})

    assert settings.database_path == Path("queue.db")
    assert settings.max_redirects == 2


def test_load_settings_rejects_broken_toml(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    path = tmp_path / "settings.toml"
    path.write_text("[storage\n", encoding="utf-8")

    with pytest.raises(ConfigError, match="Could not parse"):
        load_settings(path, environ={"DATABASE_PATH": "x.db"})
