"""Environment variable overrides for the client configuration.

Every scalar in the config tree can be overridden with a variable named
``VM_{PATH_TO_PROPERTY}`` in upper case, path components joined by
underscores:

    VM_SYSTEM_LOG_LEVEL=DEBUG
    VM_AUDIO_CAPTURE_SAMPLE_RATE=16000
    VM_PROVIDER_MODEL=gemini-2.5-flash-native-audio-preview-09-2025
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, List

logger = logging.getLogger(__name__)

ENV_PREFIX = "VM"

_TRUE_VALUES = ("true", "yes", "1", "on")
_FALSE_VALUES = ("false", "no", "0", "off")


class EnvConfigError(Exception):
    """Raised when an environment override cannot be parsed."""


def parse_env_value(value: str, existing_value: Any) -> Any:
    """Parse an environment string using the type of the value it replaces.

    Examples:
        >>> parse_env_value("true", False)
        True
        >>> parse_env_value("24000", 16000)
        24000
        >>> parse_env_value("none", "INFO") is None
        True
    """
    if value == "" or value.lower() in ("null", "none"):
        return None

    target_type = type(existing_value) if existing_value is not None else str

    if target_type is bool:
        lowered = value.lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
        raise EnvConfigError(
            f"Cannot parse '{value}' as boolean. "
            f"Valid values: {'/'.join(_TRUE_VALUES)} or {'/'.join(_FALSE_VALUES)}"
        )

    if target_type in (int, float):
        try:
            return target_type(value)
        except ValueError as exc:
            raise EnvConfigError(f"Cannot parse '{value}' as {target_type.__name__}") from exc

    if target_type in (dict, list):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError as exc:
            raise EnvConfigError(f"Cannot parse '{value}' as JSON {target_type.__name__}") from exc
        if not isinstance(parsed, target_type):
            raise EnvConfigError(f"Expected JSON {target_type.__name__}, got {type(parsed).__name__}")
        return parsed

    return value


def env_var_name(path: List[str], prefix: str = ENV_PREFIX) -> str:
    """Build the variable name for a config path.

    >>> env_var_name(["provider", "voices", "en_to_ru"])
    'VM_PROVIDER_VOICES_EN_TO_RU'
    """
    return "_".join(part.upper() for part in [prefix, *path])


def apply_env_overrides(
    config_dict: Dict[str, Any],
    prefix: str = ENV_PREFIX,
    path: List[str] | None = None,
) -> Dict[str, Any]:
    """Return a copy of ``config_dict`` with environment overrides applied.

    Nested dicts are walked so individual leaves can be set; lists are left
    untouched.
    """
    path = path or []
    result = dict(config_dict)

    for key, value in result.items():
        current_path = path + [key]

        if isinstance(value, list):
            continue

        if isinstance(value, dict):
            result[key] = apply_env_overrides(value, prefix, current_path)
            continue

        name = env_var_name(current_path, prefix)
        raw = os.environ.get(name)
        if raw is None:
            continue

        try:
            result[key] = parse_env_value(raw, value)
        except EnvConfigError as exc:
            raise EnvConfigError(f"Failed to parse environment variable {name}: {exc}") from exc
        logger.info(
            "config_override_from_env var=%s value_type=%s path=%s",
            name,
            type(result[key]).__name__,
            ".".join(current_path),
        )

    return result


__all__ = ["ENV_PREFIX", "EnvConfigError", "apply_env_overrides", "env_var_name", "parse_env_value"]
