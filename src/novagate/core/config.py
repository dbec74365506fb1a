"""
Layered gateway configuration.

Each layer is a plain nested dict; later layers win key by key:

    built-in paths  <  consumer defaults  <  config file  <  NOVAGATE_* env vars

Env vars name nested keys with a double underscore, so
``NOVAGATE_RESTART__CEILING=8`` lands in ``restart.ceiling``.  Values from the
environment stay strings; the pydantic schema coerces them on ``validated()``.

Usage:
    config = Config(config_file="config.yaml")
    config.get("commands.prefix")
    settings = config.validated()        # GatewaySettings or ConfigurationError
"""

import json
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from novagate.core.config_schema import GatewaySettings
from novagate.core.exceptions import ConfigurationError

ENV_PREFIX = "NOVAGATE_"
DATA_DIR = Path("~") / ".novagate-data"

_PARSERS = {
    ".yaml": yaml.safe_load,
    ".yml": yaml.safe_load,
    ".json": json.load,
}


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Return a new dict with *override* merged over *base*, section by section."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def read_config_file(path: str | Path) -> dict[str, Any]:
    """Parse a YAML or JSON file into a dict (an empty file gives ``{}``)."""
    path = Path(path)
    parser = _PARSERS.get(path.suffix.lower())
    if parser is None:
        raise ConfigurationError(f"Unsupported config file type: {path}")
    if not path.is_file():
        raise ConfigurationError(f"Config file not found: {path}")
    try:
        with path.open() as f:
            data = parser(f) or {}
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Could not parse config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping at the top level")
    return data


def env_overrides(prefix: str, environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Collect ``PREFIX_SECTION__KEY`` variables into a nested dict."""
    environ = os.environ if environ is None else environ
    overrides: dict[str, Any] = {}
    if not prefix:
        return overrides
    for name, value in environ.items():
        if not name.startswith(prefix) or len(name) == len(prefix):
            continue
        *sections, leaf = name[len(prefix) :].lower().split("__")
        node = overrides
        for section in sections:
            node = node.setdefault(section, {})
        node[leaf] = value
    return overrides


class Config:
    """
    Merged view over the configuration layers.

    Args:
        config_file: YAML or JSON file; it must exist when given.
        env_prefix: Prefix of override variables. Empty disables env overrides.
        data_dir: Base for logs and session credentials (default ``~/.novagate-data``).
        defaults: Extra defaults supplied by the embedding application.
    """

    def __init__(
        self,
        config_file: str | None = None,
        env_prefix: str = ENV_PREFIX,
        data_dir: str | None = None,
        defaults: dict[str, Any] | None = None,
    ):
        self.config_file = config_file
        self.env_prefix = env_prefix or ""
        self._data_dir = Path(data_dir) if data_dir else DATA_DIR

        layers = [self._builtin_layer(), defaults or {}]
        if config_file:
            layers.append(read_config_file(config_file))
        layers.append(env_overrides(self.env_prefix))

        self.config_data: dict[str, Any] = {}
        for layer in layers:
            self.config_data = deep_merge(self.config_data, layer)

    def _builtin_layer(self) -> dict[str, Any]:
        base = self._data_dir.expanduser()
        return {
            "paths": {"data_dir": str(base), "log_dir": str(base / "logs")},
            "session": {"credentials_dir": str(base / "sessions")},
        }

    def get(self, key_path: str, default: Any = None) -> Any:
        """Look up ``"section.key"``; *default* when any part is missing."""
        node: Any = self.config_data
        for part in key_path.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def set(self, key_path: str, value: Any) -> None:
        """Assign ``"section.key"``, creating sections on the way."""
        *sections, leaf = key_path.split(".")
        node = self.config_data
        for section in sections:
            node = node.setdefault(section, {})
        node[leaf] = value

    def validated(self) -> GatewaySettings:
        """Typed settings; every schema problem is reported in one ConfigurationError."""
        try:
            return GatewaySettings.model_validate(self.config_data)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            raise ConfigurationError(f"Invalid configuration: {problems}") from e

    def get_data_dir(self) -> str:
        return os.path.expanduser(self.get("paths.data_dir", str(self._data_dir)))

    def ensure_directories(self) -> None:
        """Create the data, log and credentials directories."""
        targets = [v for v in self.get("paths", {}).values() if isinstance(v, str)]
        credentials_dir = self.get("session.credentials_dir")
        if isinstance(credentials_dir, str):
            targets.append(credentials_dir)
        for target in targets:
            Path(target).expanduser().mkdir(parents=True, exist_ok=True)
