"""
metricd - Configuration Tests
"""

import json

import pytest

from metricd.config import (
    load_agent_settings,
    load_server_settings,
    split_address,
)

ENV_VARS = [
    "ADDRESS", "POLL_INTERVAL", "REPORT_INTERVAL", "RATE_LIMIT", "KEY", "LOG_LEVEL",
    "STORE_INTERVAL", "FILE_STORAGE_PATH", "RESTORE", "DATABASE_DSN", "CONFIG",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Isolate from the real environment and any .env file."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


class TestAgentSettings:
    """Agent configuration sources."""

    def test_defaults(self):
        settings = load_agent_settings([])

        assert settings.address == "localhost:8080"
        assert settings.poll_interval == 2
        assert settings.report_interval == 10
        assert settings.worker_count == 1
        assert settings.key == ""

    def test_env(self, monkeypatch):
        monkeypatch.setenv("ADDRESS", "collector:9000")
        monkeypatch.setenv("RATE_LIMIT", "4")

        settings = load_agent_settings([])

        assert settings.address == "collector:9000"
        assert settings.worker_count == 4

    def test_flags_override_env(self, monkeypatch):
        monkeypatch.setenv("REPORT_INTERVAL", "30")

        settings = load_agent_settings(["-r", "5", "-p", "1", "-l", "3", "-k", "secret"])

        assert settings.report_interval == 5
        assert settings.poll_interval == 1
        assert settings.worker_count == 3
        assert settings.key == "secret"

    def test_precedence(self, monkeypatch, tmp_path):
        config = tmp_path / "agent.yaml"
        config.write_text("address: file:1\npoll_interval: 7\nreport_interval: 8\n")
        monkeypatch.setenv("POLL_INTERVAL", "3")

        settings = load_agent_settings(["-c", str(config), "-r", "9"])

        assert settings.address == "file:1"
        assert settings.poll_interval == 3
        assert settings.report_interval == 9

    def test_config_env_var(self, monkeypatch, tmp_path):
        config = tmp_path / "agent.json"
        config.write_text(json.dumps({"worker_count": 5}))
        monkeypatch.setenv("CONFIG", str(config))

        assert load_agent_settings([]).worker_count == 5

    def test_missing_config_file(self, tmp_path):
        settings = load_agent_settings(["-c", str(tmp_path / "missing.yaml")])
        assert settings.address == "localhost:8080"

    def test_dotenv(self, tmp_path):
        (tmp_path / ".env").write_text("KEY=from-dotenv\n")

        assert load_agent_settings([]).key == "from-dotenv"


class TestServerSettings:
    """Server configuration sources."""

    def test_defaults(self):
        settings = load_server_settings([])

        assert settings.address == "localhost:8080"
        assert settings.store_interval == 300
        assert settings.store_file == "/tmp/metrics-db.json"
        assert settings.restore is True
        assert settings.database_dsn == ""

    def test_env(self, monkeypatch):
        monkeypatch.setenv("STORE_INTERVAL", "0")
        monkeypatch.setenv("FILE_STORAGE_PATH", "/var/lib/metricd.json")
        monkeypatch.setenv("RESTORE", "false")

        settings = load_server_settings([])

        assert settings.store_interval == 0
        assert settings.store_file == "/var/lib/metricd.json"
        assert settings.restore is False

    def test_flags(self):
        settings = load_server_settings(
            ["-a", ":9090", "-i", "15", "-f", "backup.json", "-r", "false", "-d", "metrics.db"]
        )

        assert settings.host == "0.0.0.0"
        assert settings.port == 9090
        assert settings.store_interval == 15
        assert settings.store_file == "backup.json"
        assert settings.restore is False
        assert settings.database_dsn == "metrics.db"

    def test_bad_restore_flag(self):
        with pytest.raises(SystemExit):
            load_server_settings(["-r", "maybe"])


class TestSplitAddress:
    def test_host_and_port(self):
        assert split_address("localhost:8080") == ("localhost", 8080)

    def test_missing_port(self):
        with pytest.raises(ValueError):
            split_address("localhost")
