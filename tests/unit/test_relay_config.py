"""Unit tests for the RelayConfig builder."""

from __future__ import annotations

import logging

import pytest

from pairchat.configurations.configuration_constants import Defaults
from pairchat.configurations.relay_config import RelayConfig
from pairchat.server.matchmaker import FIFOMatchmaker


class TestRelayConfig:
    def test_defaults(self, monkeypatch):
        for var in ("PAIRCHAT_HOST", "PAIRCHAT_PORT", "PAIRCHAT_CLIENT_ORIGIN", "ADMIN_PASSWORD"):
            monkeypatch.delenv(var, raising=False)
        config = RelayConfig()

        assert config.port == 8000
        assert config.cors_allowed_origins == "*"
        assert config.match_delay_s == Defaults.MatchDelaySeconds
        assert config.history_size == Defaults.HistorySize
        assert config.rescan_interval_s is None
        assert config.ban_check_fail_open is False
        assert config.requeue_on_drain is True
        assert config.admin_password is None

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("PAIRCHAT_PORT", "9001")
        monkeypatch.setenv("PAIRCHAT_CLIENT_ORIGIN", "https://chat.example")
        monkeypatch.setenv("ADMIN_PASSWORD", "hunter2")

        config = RelayConfig()

        assert config.port == 9001
        assert config.cors_allowed_origins == "https://chat.example"
        assert config.admin_password == "hunter2"

    def test_chained_setters(self):
        matchmaker = FIFOMatchmaker()
        config = (
            RelayConfig()
            .hosting(host="127.0.0.1", port=5000, secret_key="s3cret")
            .matchmaking(match_delay_s=1.5, min_prefix_length=4, rescan_interval_s=10, matchmaker=matchmaker)
            .rooms(history_size=50, inactivity_timeout_s=300, inactivity_warning_lead_s=60)
            .moderation(ban_check_fail_open=True, collaborator_timeout_s=0.5)
            .admin(enabled=False)
            .logging(log_file=None, level=logging.DEBUG, match_logs_dir=None)
        )

        assert (config.host, config.port, config.secret_key) == ("127.0.0.1", 5000, "s3cret")
        assert config.match_delay_s == 1.5
        assert config.min_prefix_length == 4
        assert config.rescan_interval_s == 10
        assert config.matchmaker is matchmaker
        assert config.history_size == 50
        assert config.inactivity_warning_lead_s == 60
        assert config.ban_check_fail_open is True
        assert config.collaborator_timeout_s == 0.5
        assert config.admin_enabled is False
        assert config.log_file is None
        assert config.log_level == logging.DEBUG
        assert config.match_logs_dir is None

    def test_unset_arguments_leave_values_alone(self):
        config = RelayConfig().matchmaking(match_delay_s=7)
        config.matchmaking(min_prefix_length=5)
        assert config.match_delay_s == 7

    def test_invalid_values_rejected(self):
        with pytest.raises(ValueError):
            RelayConfig().matchmaking(match_delay_s=-1)
        with pytest.raises(ValueError):
            RelayConfig().matchmaking(min_prefix_length=0)
        with pytest.raises(ValueError):
            RelayConfig().rooms(history_size=0)
