"""Tests for novagate.core.config."""

import json
import os

import pytest
import yaml

from novagate.core.config import Config
from novagate.core.exceptions import ConfigurationError


class TestConfig:
    def test_defaults(self):
        config = Config()
        assert config.get("paths.data_dir").endswith(".novagate-data")
        assert config.get("session.credentials_dir").endswith("sessions")

    def test_custom_data_dir(self, tmp_dir):
        config = Config(data_dir=tmp_dir)
        assert config.get("paths.data_dir") == tmp_dir
        assert config.get("paths.log_dir") == os.path.join(tmp_dir, "logs")
        assert config.get("session.credentials_dir") == os.path.join(tmp_dir, "sessions")

    def test_yaml_config_file(self, tmp_config_file, tmp_dir):
        config = Config(config_file=tmp_config_file, data_dir=tmp_dir)
        assert config.get("bot.name") == "TestBot"
        assert config.get("session.id") == "main"

    def test_json_config_file(self, tmp_dir):
        path = os.path.join(tmp_dir, "config.json")
        with open(path, "w") as f:
            json.dump({"commands": {"prefix": "^#"}}, f)
        config = Config(config_file=path, data_dir=tmp_dir)
        assert config.get("commands.prefix") == "^#"

    def test_missing_file_is_configuration_error(self, tmp_dir):
        with pytest.raises(ConfigurationError):
            Config(config_file=os.path.join(tmp_dir, "nope.yaml"))

    def test_unparseable_file(self, tmp_dir):
        path = os.path.join(tmp_dir, "config.yaml")
        with open(path, "w") as f:
            f.write("session: [unclosed\n")
        with pytest.raises(ConfigurationError):
            Config(config_file=path)

    def test_unsupported_extension(self, tmp_dir):
        path = os.path.join(tmp_dir, "config.toml")
        with open(path, "w") as f:
            f.write("x = 1\n")
        with pytest.raises(ConfigurationError):
            Config(config_file=path)

    def test_env_overrides_file(self, tmp_config_file, monkeypatch):
        monkeypatch.setenv("NOVAGATE_SESSION__ID", "from-env")
        monkeypatch.setenv("NOVAGATE_ACCESS__ELEVATED", "111,222")
        config = Config(config_file=tmp_config_file)
        assert config.get("session.id") == "from-env"
        assert config.validated().access.elevated == ["111", "222"]

    def test_custom_env_prefix(self, monkeypatch, tmp_dir):
        monkeypatch.setenv("MYBOT_RESTART__CEILING", "9")
        config = Config(env_prefix="MYBOT_", data_dir=tmp_dir)
        assert config.get("restart.ceiling") == "9"

    def test_consumer_defaults(self, tmp_dir):
        config = Config(data_dir=tmp_dir, defaults={"bot": {"name": "Custom"}})
        assert config.get("bot.name") == "Custom"

    def test_get_missing_key(self, tmp_dir):
        config = Config(data_dir=tmp_dir)
        assert config.get("nonexistent.key") is None
        assert config.get("nonexistent.key", "fallback") == "fallback"

    def test_set(self, tmp_dir):
        config = Config(data_dir=tmp_dir)
        config.set("commands.cooldown_ms", 500)
        assert config.get("commands.cooldown_ms") == 500

    def test_ensure_directories(self, tmp_dir):
        config = Config(data_dir=os.path.join(tmp_dir, "data"))
        config.ensure_directories()
        assert os.path.isdir(os.path.join(tmp_dir, "data", "logs"))
        assert config.get_data_dir() == os.path.join(tmp_dir, "data")


@pytest.mark.smoke
class TestValidated:
    def test_valid_file(self, tmp_config_file):
        settings = Config(config_file=tmp_config_file).validated()
        assert settings.bot.name == "TestBot"
        assert settings.session.id == "main"
        assert settings.access.elevated == ["919876543210"]

    def test_missing_session_id(self, tmp_dir):
        with pytest.raises(ConfigurationError, match="session.id"):
            Config(data_dir=tmp_dir).validated()

    def test_invalid_value_lists_location(self, tmp_dir):
        path = os.path.join(tmp_dir, "config.yaml")
        with open(path, "w") as f:
            yaml.dump({"session": {"id": "main"}, "restart": {"ceiling": 0}}, f)
        with pytest.raises(ConfigurationError, match="restart.ceiling"):
            Config(config_file=path, data_dir=tmp_dir).validated()
