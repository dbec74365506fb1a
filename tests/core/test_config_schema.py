"""Tests for novagate.core.config_schema."""

import re
from pathlib import Path

import pytest
from pydantic import ValidationError

from novagate.core.config_schema import (
    AntiLinkSettings,
    CommandSettings,
    GatewaySettings,
    RestartSettings,
    SessionSettings,
)


@pytest.mark.smoke
class TestGatewaySettings:
    def test_defaults(self):
        settings = GatewaySettings.model_validate({"session": {"id": "main"}})
        assert settings.bot.name == "Nova"
        assert settings.commands.prefix == r"^[.,!]"
        assert settings.commands.cooldown == 2.0
        assert settings.commands.handler_timeout == 30.0
        assert settings.restart.ceiling == 5
        assert settings.restart.window == 30.0
        assert settings.restart.fallback_delay == 5.0
        assert settings.restart.connect_retry_delay == 5.0
        assert settings.cache.ttl == 300.0
        assert settings.shutdown.grace == 5.0
        assert settings.notifications.broadcast_ready is True
        assert settings.notifications.welcome is False

    def test_session_is_required(self):
        with pytest.raises(ValidationError):
            GatewaySettings.model_validate({})

    def test_blank_session_id_rejected(self):
        with pytest.raises(ValidationError):
            SessionSettings(id="   ")

    def test_extra_sections_allowed(self):
        settings = GatewaySettings.model_validate({"session": {"id": "main"}, "weather": {"api_key": "x"}})
        assert settings.model_extra["weather"] == {"api_key": "x"}

    def test_env_strings_are_coerced(self):
        settings = GatewaySettings.model_validate(
            {"session": {"id": "main", "logout_on_shutdown": "true"}, "restart": {"ceiling": "7"}}
        )
        assert settings.session.logout_on_shutdown is True
        assert settings.restart.ceiling == 7


class TestSessionSettings:
    def test_legacy_variant_gets_own_credentials_key(self):
        assert SessionSettings(id="main").credentials_key == "main"
        assert SessionSettings(id="main", variant="legacy").credentials_key == "main_legacy"

    def test_unknown_variant_rejected(self):
        with pytest.raises(ValidationError):
            SessionSettings(id="main", variant="desktop")

    def test_credentials_dir_expands_user(self):
        settings = SessionSettings(id="main", credentials_dir="~/sessions")
        assert settings.credentials_dir == Path.home() / "sessions"

    def test_connect_timeout_seconds(self):
        assert SessionSettings(id="main", connect_timeout_ms=1500).connect_timeout == 1.5


class TestCommandSettings:
    def test_prefix_pattern_is_case_insensitive(self):
        pattern = CommandSettings(prefix="^nova ").prefix_pattern
        assert pattern.flags & re.IGNORECASE
        assert pattern.match("NOVA ping")

    @pytest.mark.parametrize("prefix", ["", "  ", "^[unclosed"])
    def test_bad_prefix_rejected(self, prefix):
        with pytest.raises(ValidationError):
            CommandSettings(prefix=prefix)

    def test_csv_lists(self):
        settings = CommandSettings(disabled="reload, groupinfo", plugin_dirs="~/a,/b")
        assert settings.disabled == ["reload", "groupinfo"]
        assert settings.plugin_dirs == [Path.home() / "a", Path("/b")]


class TestAccessSettings:
    def test_elevated_csv_and_keys(self):
        settings = GatewaySettings.model_validate(
            {"session": {"id": "main"}, "access": {"elevated": "+91 98765-43210, 15551234567"}}
        )
        assert settings.access.elevated == ["+91 98765-43210", "15551234567"]
        assert settings.access.elevated_keys == {"919876543210", "15551234567"}

    def test_elevated_list_of_numbers(self):
        settings = GatewaySettings.model_validate({"session": {"id": "main"}, "access": {"elevated": [919876543210]}})
        assert settings.access.elevated == ["919876543210"]


class TestRestartSettings:
    def test_ceilings_must_be_positive(self):
        with pytest.raises(ValidationError):
            RestartSettings(primary_ceiling=0)

    def test_independent_windows(self):
        settings = RestartSettings(window_ms=60_000, primary_window_ms=10_000)
        assert settings.window == 60.0
        assert settings.primary_window == 10.0


class TestAntiLinkSettings:
    def test_defaults(self):
        settings = GatewaySettings.model_validate({"session": {"id": "main"}})
        assert settings.antilink.enabled is False
        assert settings.antilink.action == "delete"
        assert settings.antilink.allowed_domains == []
        assert settings.antilink.exempt_elevated is True

    def test_allowed_domains_csv_is_normalized(self):
        settings = AntiLinkSettings(allowed_domains="www.YouTube.com, github.com., ,")
        assert settings.allowed_domains == ["youtube.com", "github.com"]

    def test_unknown_action_rejected(self):
        with pytest.raises(ValidationError):
            AntiLinkSettings(action="ban")
