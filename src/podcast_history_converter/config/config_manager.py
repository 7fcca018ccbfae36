import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import typer
import yaml

from podcast_history_converter.utils.path_utils import resolve_config_path

ENV_PREFIX = "PHC_"

TRUE_STRINGS = ("1", "true", "yes", "on")


class ConfigSource(Enum):
    CLI_ARGUMENT = "cli_arg"
    ENVIRONMENT_VARIABLE = "env_var"
    ENVIRONMENT_SETTINGS = "env_settings"
    BASE_SETTINGS = "base_settings"
    DEFAULT = "default"


@dataclass
class Parameter:
    """A resolved setting and where its value came from."""

    value: Any
    source: ConfigSource


def read_settings(path: Path, required: bool = True) -> Dict[str, Any]:
    """Read a YAML settings file into a dict.

    Raises:
        FileNotFoundError: If a required file doesn't exist
        ValueError: If the file is not valid YAML or not a mapping
    """
    try:
        with open(path, "r") as file:
            settings = yaml.safe_load(file)
    except FileNotFoundError:
        if required:
            raise FileNotFoundError(f"Required settings file not found: {path}")
        return {}
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}")

    if settings is None:
        return {}
    if not isinstance(settings, dict):
        raise ValueError(f"Settings file {path} must contain a mapping")
    return settings


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge override into a copy of base.

    Example:
        >>> deep_merge({"matching": {"title_fallback": True, "duration_tolerance_seconds": 2}},
        ...            {"matching": {"duration_tolerance_seconds": 5}})
        {'matching': {'title_fallback': True, 'duration_tolerance_seconds': 5}}
    """
    merged = dict(base)
    for key, value in override.items():
        if isinstance(merged.get(key), dict) and isinstance(value, dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def lookup(settings: Dict[str, Any], key: str) -> Optional[Any]:
    """Get a value by dotted key, None when any segment is missing."""
    value: Any = settings
    for segment in key.split("."):
        if not isinstance(value, dict) or segment not in value:
            return None
        value = value[segment]
    return value


def env_var_name(key: str) -> str:
    """Environment variable overriding a dotted key, e.g. PHC_MATCHING_TITLE_FALLBACK."""
    return ENV_PREFIX + key.replace(".", "_").upper()


@dataclass
class ConfigManager:
    """Settings from configs/settings.yaml, an optional per-environment
    override file and the command line.

    The environment comes from PHC_ENVIRONMENT; settings.{environment}.yaml
    next to the base file is merged over it when present.
    """

    config_path: Path = field(
        default_factory=lambda: resolve_config_path("settings.yaml")
    )
    environment: str = field(
        default_factory=lambda: os.environ.get(f"{ENV_PREFIX}ENVIRONMENT", "default")
    )
    typer_ctx: Optional[typer.Context] = field(default=None)

    base_settings: Dict[str, Any] = field(init=False, default_factory=dict)
    env_settings: Dict[str, Any] = field(init=False, default_factory=dict)
    merged_settings: Dict[str, Any] = field(init=False, default_factory=dict)

    def __post_init__(self) -> None:
        self.config_path = Path(self.config_path)
        self.base_settings = read_settings(self.config_path)
        self.env_settings = read_settings(
            self.config_path.with_name(f"settings.{self.environment}.yaml"),
            required=False,
        )
        self.merged_settings = deep_merge(self.base_settings, self.env_settings)

    def get(self, key: str, default: Any = None) -> Any:
        """Read a merged setting, ignoring CLI and environment variables.

        Used for settings that are not meant to be overridden per run, such as
        logging.
        """
        value = lookup(self.merged_settings, key)
        return default if value is None else value

    def get_param(self, key: str, default: Any = None) -> Parameter:
        """Resolve a setting through the full precedence chain.

        1. CLI option named like the last key segment
        2. Environment variable (PHC_ prefix, dots become underscores)
        3. Environment settings (settings.{env}.yaml)
        4. Base settings (settings.yaml)
        5. default

        Args:
            key: Dotted key, e.g. "matching.duration_tolerance_seconds"
            default: Value used when no source defines the key

        Returns:
            Parameter: Value and the source it was resolved from
        """
        for source, resolve in self._resolvers():
            value = resolve(key)
            if value is not None:
                return Parameter(value, source)
        return Parameter(default, ConfigSource.DEFAULT)

    def get_int(self, key: str, default: int) -> int:
        value = self.get_param(key, default=default).value
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ValueError(f"Setting '{key}' must be an integer, got {value!r}")

    def get_bool(self, key: str, default: bool) -> bool:
        value = self.get_param(key, default=default).value
        if isinstance(value, str):
            return value.strip().lower() in TRUE_STRINGS
        return bool(value)

    def _resolvers(self) -> List[Tuple[ConfigSource, Callable[[str], Optional[Any]]]]:
        return [
            (ConfigSource.CLI_ARGUMENT, self._cli_value),
            (ConfigSource.ENVIRONMENT_VARIABLE, lambda key: os.environ.get(env_var_name(key))),
            (ConfigSource.ENVIRONMENT_SETTINGS, lambda key: lookup(self.env_settings, key)),
            (ConfigSource.BASE_SETTINGS, lambda key: lookup(self.base_settings, key)),
        ]

    def _cli_value(self, key: str) -> Optional[Any]:
        # Options left unset on the command line arrive as None
        if self.typer_ctx is None:
            return None
        return self.typer_ctx.params.get(key.split(".")[-1])
