"""
Tests for agent configuration precedence.
"""

import pytest

from agent.config import AgentConfig, load_config


class TestAgentConfig:
    """Tests for defaults, environment and flags."""

    def test_defaults(self):
        config = load_config([], environ={})
        assert config == AgentConfig()
        assert config.server_address == "localhost:8080"
        assert config.poll_interval == 2
        assert config.report_interval == 10
        assert config.key == ""
        assert config.rate_limit == 1

    def test_environment_overrides_defaults(self):
        environ = {
            "ADDRESS": "metrics:9090",
            "POLL_INTERVAL": "1",
            "REPORT_INTERVAL": "5",
            "KEY": "secret",
            "RATE_LIMIT": "4",
        }
        config = load_config([], environ=environ)

        assert config.server_address == "metrics:9090"
        assert config.poll_interval == 1
        assert config.report_interval == 5
        assert config.key == "secret"
        assert config.rate_limit == 4

    def test_flags_override_environment(self):
        environ = {"ADDRESS": "metrics:9090", "RATE_LIMIT": "4"}
        config = load_config(["-a", "other:1", "-l", "2", "-k", "flagkey"], environ=environ)

        assert config.server_address == "other:1"
        assert config.rate_limit == 2
        assert config.key == "flagkey"

    def test_invalid_environment_integer_falls_back(self, caplog):
        config = load_config([], environ={"POLL_INTERVAL": "often"})
        assert config.poll_interval == 2
        assert "POLL_INTERVAL" in caplog.text

    def test_invalid_flag_exits(self):
        with pytest.raises(SystemExit):
            load_config(["-p", "soon"], environ={})

    def test_log_level_flag(self):
        assert load_config(["--log-level", "debug"], environ={}).log_level == "DEBUG"


class TestValidation:
    """Tests for AgentConfig.validate."""

    def test_valid_defaults(self):
        assert AgentConfig().validate() == []

    def test_rejects_bad_values(self):
        errors = AgentConfig(poll_interval=0, report_interval=-1, rate_limit=0).validate()
        assert len(errors) == 3
