from __future__ import annotations

from typing import Any, Dict, Mapping, Optional


def deep_merge(base: Mapping[str, Any], override: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Recursively merge two mappings.
    - Dicts are merged
    - All other values (including lists) are replaced
    - If override is None, returns a copy of base
    """
    result: Dict[str, Any] = dict(base)

    if override is None:
        return result

    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def first_present(data: Mapping[str, Any], *keys: str) -> Any:
    """Return the value of the first key present in ``data``.

    The live channel speaks camelCase on the wire but some gateways forward
    snake_case, so lookups accept both spellings.

    Examples:
        >>> first_present({"turn_complete": True}, "turnComplete", "turn_complete")
        True
        >>> first_present({}, "a", "b") is None
        True
    """
    for key in keys:
        if key in data:
            return data[key]
    return None
