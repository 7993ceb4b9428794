"""Configuration loading from YAML files with environment variable support."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml
from dotenv import dotenv_values

from .core.exceptions import ConfigurationError
from .messages.translator import MAX_TOKENS_FIELDS

logger = logging.getLogger("messages-shim")

# Default path to the config file (relative to project root)
DEFAULT_CONFIG_PATH = "configs/config_default.yaml"

# Environment variable to override the config path
CONFIG_PATH_ENV = "MESSAGES_SHIM_CONFIG"

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3000
DEFAULT_BASE_URL = "https://api.cerebras.ai/v1"
DEFAULT_MODEL = "zai-glm-4.6"
DEFAULT_TIMEOUT = 600.0
DEFAULT_LOG_LEVEL = "info"

LOG_LEVELS = ("debug", "info", "warning", "error")

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)")


@dataclass(frozen=True)
class ShimSettings:
    """Resolved process configuration."""

    api_key: str
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    base_url: str = DEFAULT_BASE_URL
    model: str = DEFAULT_MODEL
    timeout: float = DEFAULT_TIMEOUT
    max_tokens_field: str = "max_completion_tokens"
    log_level: str = DEFAULT_LOG_LEVEL


def resolve_config_path(path: str) -> Path:
    """Resolve config path relative to project root if needed."""
    if Path(path).is_absolute():
        return Path(path)
    project_root = Path(__file__).parent.parent
    return project_root / path


def resolve_env_path(config_path: Path, env_path: str | None = None) -> Path:
    """Resolve the env file path for a config file."""
    if env_path:
        return resolve_config_path(env_path)
    return config_path.with_name(".env")


def load_env_values(env_path: Path) -> dict[str, str]:
    """Load environment values from a .env file without mutating os.environ."""
    if not env_path.exists():
        return {}
    raw_values = dotenv_values(env_path)
    return {key: value for key, value in raw_values.items() if value is not None}


def load_config(
    path: str | None = None,
    env_path: str | None = None,
    substitute_env: bool = True,
) -> dict:
    """Load configuration from a YAML file.

    Args:
        path: Path to the config file. Defaults to MESSAGES_SHIM_CONFIG,
              or configs/config_default.yaml in the project root.
        env_path: Optional .env path override for env substitution.
        substitute_env: Whether to substitute environment variables in the config.

    Returns:
        Parsed configuration dictionary.

    Raises:
        ConfigurationError: If the file is missing or is not a YAML mapping.
    """
    if path is None:
        path = os.getenv(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH

    config_path = resolve_config_path(path)

    logger.info(f"Loading configuration from {config_path}")

    if not config_path.exists():
        logger.error(f"Config file not found: {config_path}")
        raise ConfigurationError(f"Config file not found: {config_path}")

    env_values: dict[str, str] = {}
    if substitute_env:
        env_file = resolve_env_path(config_path, env_path)
        if env_file.exists():
            logger.info(f"Loading environment variables from {env_file}")
            env_values = load_env_values(env_file)

    try:
        with config_path.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {config_path} must contain a mapping")

    if substitute_env:
        data = _substitute_env_vars(data, env_values)

    logger.info(f"Configuration loaded successfully from {config_path}")
    return data


def _substitute_env_vars(
    obj: Any, env_values: Mapping[str, str] | None = None
) -> Any:
    """Recursively substitute environment variables in configuration values.

    Supports two formats:
    - ${VAR_NAME}: Braced format
    - $VAR_NAME: Simple format

    Values from the .env file win over the process environment. Unset
    variables leave the placeholder in place and log a warning.
    """
    env_values = env_values or {}

    if isinstance(obj, dict):
        return {k: _substitute_env_vars(v, env_values) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_substitute_env_vars(item, env_values) for item in obj]
    if isinstance(obj, str):
        def replace_var(match):
            var_name = match.group(1) or match.group(2)
            value = env_values.get(var_name)
            if value is None:
                value = os.getenv(var_name)
            if value is None:
                logger.warning(
                    f"CONFIG ERROR: Environment variable '${var_name}' is not set! "
                    f"Check your .env file or export it in your shell."
                )
                return match.group(0)  # Return original placeholder
            return value

        return _ENV_PATTERN.sub(replace_var, obj)
    return obj


def _get(cfg: Mapping[str, Any], *keys: str) -> Any:
    cur: Any = cfg
    for key in keys:
        if not isinstance(cur, Mapping):
            return None
        cur = cur.get(key)
    return cur


def _to_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _to_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _to_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def mask_secret(value: str, visible: int = 8) -> str:
    """Return a loggable form of a secret showing only its prefix."""
    if not value:
        return ""
    return f"{value[:visible]}... ({len(value)} chars)"


def settings_from_config(
    cfg: Mapping[str, Any],
    environ: Mapping[str, str] | None = None,
) -> ShimSettings:
    """Build settings from a loaded config mapping.

    Environment variables take priority over the config file:
    MESSAGES_SHIM_HOST, MESSAGES_SHIM_PORT and MESSAGES_SHIM_LOG_LEVEL.
    The API key falls back to CEREBRAS_API_KEY when the file has none.

    Raises:
        ConfigurationError: If a value is missing or invalid.
    """
    env = os.environ if environ is None else environ

    host = env.get("MESSAGES_SHIM_HOST") or _to_str(_get(cfg, "server", "host")) or DEFAULT_HOST

    raw_port = env.get("MESSAGES_SHIM_PORT") or _get(cfg, "server", "port")
    port = DEFAULT_PORT if raw_port is None else _to_int(raw_port)
    if port is None or not 0 < port < 65536:
        raise ConfigurationError(f"Invalid server port: {raw_port!r}")

    api_key = _to_str(_get(cfg, "provider", "api_key")) or env.get("CEREBRAS_API_KEY") or ""
    if not api_key or api_key.startswith("$"):
        raise ConfigurationError(
            "Provider API key is not set (provider.api_key or CEREBRAS_API_KEY)"
        )

    timeout = _to_float(_get(cfg, "provider", "timeout"))
    if timeout is None:
        timeout = DEFAULT_TIMEOUT
    if timeout <= 0:
        raise ConfigurationError(f"Invalid provider timeout: {timeout!r}")

    max_tokens_field = (
        _to_str(_get(cfg, "provider", "max_tokens_field")) or "max_completion_tokens"
    )
    if max_tokens_field not in MAX_TOKENS_FIELDS:
        raise ConfigurationError(
            f"provider.max_tokens_field must be one of {MAX_TOKENS_FIELDS}, got {max_tokens_field!r}"
        )

    log_level = (
        env.get("MESSAGES_SHIM_LOG_LEVEL")
        or _to_str(_get(cfg, "logging", "level"))
        or DEFAULT_LOG_LEVEL
    ).lower()
    if log_level == "warn":
        log_level = "warning"
    if log_level not in LOG_LEVELS:
        raise ConfigurationError(f"Unknown log level: {log_level!r}")

    return ShimSettings(
        api_key=api_key,
        host=host,
        port=port,
        base_url=_to_str(_get(cfg, "provider", "base_url")) or DEFAULT_BASE_URL,
        model=_to_str(_get(cfg, "provider", "model")) or DEFAULT_MODEL,
        timeout=timeout,
        max_tokens_field=max_tokens_field,
        log_level=log_level,
    )


def load_settings(
    path: str | None = None,
    env_path: str | None = None,
    overrides: Mapping[str, str] | None = None,
) -> ShimSettings:
    """Load the config file and resolve it into ``ShimSettings``.

    A missing default config file falls back to built-in defaults; a missing
    file that was asked for explicitly is an error. ``overrides`` holds
    environment-style values (``MESSAGES_SHIM_PORT`` and so on) that win over
    the process environment without being written into it.
    """
    environ = {**os.environ, **overrides} if overrides else None
    if path is None and not os.getenv(CONFIG_PATH_ENV):
        if not resolve_config_path(DEFAULT_CONFIG_PATH).exists():
            logger.warning("Default config file not found; using built-in defaults")
            return settings_from_config({}, environ=environ)
    return settings_from_config(load_config(path, env_path=env_path), environ=environ)
