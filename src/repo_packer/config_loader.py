"""Layered configuration: config file < environment < command line."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any

import tomlkit
import yaml
from dotenv import dotenv_values, find_dotenv
from pydantic import ValidationError
from tomlkit.exceptions import TOMLKitError

from repo_packer.config import CONFIG_FILE_NAMES
from repo_packer.exceptions import ConfigurationError
from repo_packer.file_manipulation import glob_base, is_glob
from repo_packer.logging import logger
from repo_packer.settings import Settings

if TYPE_CHECKING:
    from collections.abc import Mapping

ENV_PREFIX = "REPO_PACKER_"
_LIST_FIELDS = frozenset({"input_paths", "ignore_patterns", "unignore_patterns", "binary_extensions"})
_KEY_ALIASES = {"json": "json_output", "ignore": "ignore_patterns", "unignore": "unignore_patterns"}


def _normalize_key(key: str) -> str:
    name = key.strip().lower().replace("-", "_")
    return _KEY_ALIASES.get(name, name)


def find_config_file(directory: Path) -> Path | None:
    """Look for a configuration file in ``directory``.

    Args:
        directory (Path): directory to search.

    Returns:
        Path | None: the first of ``repo-packer.yaml``, ``.yml``, ``.toml``, ``.json`` found.
    """
    for name in CONFIG_FILE_NAMES:
        candidate = directory / name
        if candidate.is_file():
            return candidate
    return None


def load_config_file(path: Path) -> dict[str, Any]:
    """Parse a YAML, TOML or JSON configuration file.

    Args:
        path (Path): the configuration file.

    Raises:
        ConfigurationError: if the file cannot be read or parsed, or is not a mapping.

    Returns:
        dict[str, Any]: settings values keyed by field name.
    """
    try:
        text = path.read_text(encoding="utf-8")
        suffix = path.suffix.lower()
        if suffix in {".yaml", ".yml"}:
            data = yaml.safe_load(text) or {}
        elif suffix == ".toml":
            data = tomlkit.parse(text).unwrap()
        elif suffix == ".json":
            data = json.loads(text)
        else:
            raise ConfigurationError(field="config", value=str(path), reason="unsupported configuration format")
    except (OSError, yaml.YAMLError, TOMLKitError, json.JSONDecodeError) as e:
        raise ConfigurationError(field="config", value=str(path), reason=str(e)) from e
    if not isinstance(data, dict):
        raise ConfigurationError(field="config", value=str(path), reason="top level must be a mapping")
    logger.debug("config_file_loaded", path=str(path), keys=sorted(data))
    return {_normalize_key(k): v for k, v in data.items()}


def load_env_overrides(env: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Collect ``REPO_PACKER_*`` overrides.

    Without an explicit mapping, the nearest ``.env`` file is read first and the
    process environment takes precedence over it. List fields are comma
    separated; ``REPO_PACKER_PRIORITY_RULES`` holds a JSON array.

    Args:
        env (Mapping[str, str] | None): variables to use instead of ``.env`` + ``os.environ``.

    Raises:
        ConfigurationError: if ``REPO_PACKER_PRIORITY_RULES`` is not valid JSON.

    Returns:
        dict[str, Any]: settings values keyed by field name.
    """
    if env is None:
        env_file = find_dotenv(usecwd=True)
        values: dict[str, str | None] = {**(dotenv_values(env_file) if env_file else {}), **os.environ}
    else:
        values = dict(env)

    out: dict[str, Any] = {}
    for key, raw in values.items():
        if not key.startswith(ENV_PREFIX) or raw is None:
            continue
        name = _normalize_key(key[len(ENV_PREFIX) :])
        if name not in Settings.model_fields:
            logger.debug("env_override_ignored", variable=key)
            continue
        if name in _LIST_FIELDS:
            out[name] = [item.strip() for item in raw.split(",") if item.strip()]
        elif name == "priority_rules":
            try:
                out[name] = json.loads(raw)
            except json.JSONDecodeError as e:
                raise ConfigurationError(field=name, value=raw, reason=f"invalid JSON: {e}") from e
        else:
            out[name] = raw
    return out


def _config_directory(input_paths: list[str]) -> Path:
    first = input_paths[0] if input_paths else "."
    if is_glob(first):
        return glob_base(first)
    candidate = Path(first)
    return candidate if candidate.is_dir() else candidate.parent


def load_settings(cli_values: Mapping[str, Any], *, env: Mapping[str, str] | None = None) -> Settings:
    """Resolve the final settings from config file, environment and CLI values.

    Args:
        cli_values (Mapping[str, Any]): values given on the command line.
        env (Mapping[str, str] | None): environment override, see :func:`load_env_overrides`.

    Raises:
        ConfigurationError: if any layer is invalid.

    Returns:
        Settings: validated, frozen settings.
    """
    env_values = load_env_overrides(env)
    explicit = cli_values.get("config") or env_values.get("config")
    if explicit:
        config_path: Path | None = Path(explicit)
        if not config_path.is_file():
            raise ConfigurationError(field="config", value=str(explicit), reason="configuration file not found")
    else:
        inputs = cli_values.get("input_paths") or env_values.get("input_paths") or ["."]
        config_path = find_config_file(_config_directory(list(inputs)))

    file_values = load_config_file(config_path) if config_path else {}
    merged = {**file_values, **env_values, **cli_values}
    if config_path:
        merged["config"] = config_path
    try:
        return Settings.model_validate(merged)
    except ValidationError as e:
        error = e.errors()[0]
        field = ".".join(str(loc) for loc in error["loc"]) or "settings"
        raise ConfigurationError(field=field, value=str(error.get("input")), reason=error["msg"]) from e
