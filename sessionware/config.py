"""
Layered configuration.

Sources are merged in this order, each overriding the previous:

1. JSON or YAML files (glob patterns, applied in sorted order)
2. a ``.env`` file
3. process environment
4. explicit overrides

Only variables carrying the prefix (``SESSIONWARE_`` by default) are read
from the environment. ``__`` separates nesting levels, so
``SESSIONWARE_SESSIONS__MAX_AGE=86400000`` becomes ``sessions.max_age``.
"""

import json
import os
from glob import glob
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple

from dotenv import dotenv_values

from .sessions.policy import OPTION_ALIASES, SessionOptions


class ConfigError(Exception):
    """Configuration could not be read or has the wrong shape."""


DEFAULT_SESSION_CONFIG = {
    "key": "koa:sess",
    "max_age": None,
    "overwrite": True,
    "http_only": True,
    "signed": True,
    "auto_commit": True,
    "rolling": False,
    "renew": False,
    "path": "/",
    "domain": None,
    "secure": False,
    "same_site": None,
}

_LITERALS = {
    "true": True,
    "yes": True,
    "false": False,
    "no": False,
    "none": None,
    "null": None,
}


def deep_merge(target: dict, source: dict) -> dict:
    """Merge ``source`` into ``target`` in place, recursing into dicts."""
    for key, value in source.items():
        current = target.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            deep_merge(current, value)
        else:
            target[key] = value
    return target


class ConfigLoader:
    """Configuration tree assembled from files, ``.env``, environment and overrides."""

    def __init__(self, env_prefix: str = "SESSIONWARE_"):
        self.env_prefix = env_prefix
        self.config_data: Dict[str, Any] = {}

    @classmethod
    def load(
        cls,
        paths: Optional[list[str]] = None,
        env_prefix: str = "SESSIONWARE_",
        env_file: Optional[str] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> "ConfigLoader":
        loader = cls(env_prefix=env_prefix)

        for pattern in paths or []:
            for path in sorted(glob(pattern)):
                deep_merge(loader.config_data, loader._read_file(Path(path)))

        if env_file and Path(env_file).exists():
            loader._apply_env(dotenv_values(env_file).items())
        loader._apply_env(os.environ.items())

        if overrides:
            deep_merge(loader.config_data, overrides)
        return loader

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def _read_file(self, path: Path) -> dict:
        if path.suffix == ".json":
            with open(path) as fh:
                data = json.load(fh)
        elif path.suffix in (".yaml", ".yml"):
            import yaml
            with open(path) as fh:
                data = yaml.safe_load(fh) or {}
        else:
            raise ConfigError(f"Unsupported config file type: {path}")

        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        return data

    def _apply_env(self, items: Iterable[Tuple[str, Optional[str]]]) -> None:
        for name, raw in items:
            if raw is None or not name.startswith(self.env_prefix):
                continue
            *parents, leaf = name[len(self.env_prefix):].lower().split("__")
            node = self.config_data
            for part in parents:
                if not isinstance(node.get(part), dict):
                    node[part] = {}
                node = node[part]
            node[leaf] = self._parse_value(raw)

    def _parse_value(self, value: str) -> Any:
        """Coerce an environment string to bool, None, number or JSON when it looks like one."""
        lowered = value.lower()
        if lowered in _LITERALS:
            return _LITERALS[lowered]

        try:
            return float(value) if "." in value else int(value)
        except ValueError:
            pass

        if value[:1] in ("{", "["):
            try:
                return json.loads(value)
            except ValueError:
                pass
        return value

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    def get(self, path: str, default: Any = None) -> Any:
        """Value at a dotted path such as ``"sessions.key"``."""
        node: Any = self.config_data
        for part in path.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def to_dict(self) -> dict:
        return dict(self.config_data)

    def get_session_config(self) -> dict:
        """
        The ``sessions`` section merged over ``DEFAULT_SESSION_CONFIG``.

        camelCase names are folded to field names. The lower-case ``maxage``
        spelling is accepted too, but ``maxAge`` or ``max_age`` wins over it.
        """
        section = self.get("sessions", {}) or {}
        if not isinstance(section, dict):
            raise ConfigError("'sessions' config section must be a mapping")

        config = dict(DEFAULT_SESSION_CONFIG)
        for key, value in section.items():
            if key == "maxage":
                if "maxAge" in section or "max_age" in section:
                    continue
                key = "max_age"
            config[OPTION_ALIASES.get(key, key)] = value
        return config

    def session_options(self) -> SessionOptions:
        return SessionOptions.from_dict(self.get_session_config())
