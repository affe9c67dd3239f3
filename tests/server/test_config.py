"""
Tests for server configuration precedence.
"""

import pytest

from server.config import ServerConfig, load_config


class TestServerConfig:
    """Tests for defaults, environment and flags."""

    def test_defaults(self):
        config = load_config([], environ={})
        assert config == ServerConfig()
        assert config.address == "localhost:8080"
        assert config.store_interval == 5.0
        assert config.file_storage_path == "/tmp/metrics-db.json"
        assert config.restore is True
        assert config.database_dsn == ""

    def test_environment_overrides_defaults(self):
        environ = {
            "ADDRESS": ":9090",
            "STORE_INTERVAL": "300s",
            "FILE_STORAGE_PATH": "/var/lib/metrics.json",
            "RESTORE": "false",
            "DATABASE_DSN": "sqlite:///metrics.db",
            "KEY": "secret",
            "FLUSH_THRESHOLD": "50",
        }
        config = load_config([], environ=environ)

        assert config.address == ":9090"
        assert config.store_interval == 300.0
        assert config.file_storage_path == "/var/lib/metrics.json"
        assert config.restore is False
        assert config.database_dsn == "sqlite:///metrics.db"
        assert config.key == "secret"
        assert config.flush_threshold == 50

    def test_flags_override_environment(self):
        environ = {"ADDRESS": ":9090", "STORE_INTERVAL": "300", "RESTORE": "true"}
        config = load_config(["-a", "127.0.0.1:7000", "-i", "0", "-r", "false"], environ=environ)

        assert config.address == "127.0.0.1:7000"
        assert config.store_interval == 0.0
        assert config.restore is False

    def test_duration_flag_units(self):
        assert load_config(["-i", "2m"], environ={}).store_interval == 120.0

    def test_invalid_environment_duration_falls_back(self, caplog):
        config = load_config([], environ={"STORE_INTERVAL": "soon"})
        assert config.store_interval == 5.0
        assert "STORE_INTERVAL" in caplog.text

    @pytest.mark.parametrize("argv", [["-r", "maybe"], ["-i", "later"]])
    def test_invalid_flag_exits(self, argv):
        with pytest.raises(SystemExit):
            load_config(argv, environ={})


class TestHostPort:
    """Tests for listen address parsing."""

    @pytest.mark.parametrize("address, expected", [
        ("localhost:8080", ("localhost", 8080)),
        (":8080", ("0.0.0.0", 8080)),
        ("127.0.0.1:0", ("127.0.0.1", 0)),
    ])
    def test_valid(self, address, expected):
        assert ServerConfig(address=address).host_port() == expected

    @pytest.mark.parametrize("address", ["localhost", "localhost:http", ""])
    def test_invalid(self, address):
        with pytest.raises(ValueError):
            ServerConfig(address=address).host_port()


class TestValidation:
    """Tests for ServerConfig.validate and storage settings."""

    def test_valid_defaults(self):
        assert ServerConfig().validate() == []

    def test_rejects_bad_values(self):
        errors = ServerConfig(address="nowhere", store_interval=-1, flush_threshold=0).validate()
        assert len(errors) == 3

    def test_storage_config(self):
        storage = ServerConfig(
            store_interval=0,
            file_storage_path="/tmp/x.json",
            restore=False,
            database_dsn="sqlite://",
            flush_threshold=7,
        ).to_storage_config()

        assert storage.store_interval == 0
        assert storage.file_storage_path == "/tmp/x.json"
        assert storage.restore is False
        assert storage.database_dsn == "sqlite://"
        assert storage.flush_threshold == 7
