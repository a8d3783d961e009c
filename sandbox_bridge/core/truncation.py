"""Recursive truncation of logged values.

Console arguments are arbitrary host-application values; these helpers cap
their size before they are stored so the log buffer stays bounded.
"""

from __future__ import annotations

from typing import Any

from ..types import TruncationConfig

TRUNCATION_MARKER = "... (truncated)"
DEPTH_MARKER = "[Max depth reached]"
MORE_PROPERTIES_KEY = "..."
MORE_PROPERTIES_VALUE = "(more properties)"


def truncate_string(text: str, max_length: int) -> str:
    """Cut *text* so the result, marker included, is at most *max_length*."""
    if len(text) <= max_length:
        return text
    keep = max_length - len(TRUNCATION_MARKER)
    if keep <= 0:
        return text[:max_length]
    return text[:keep] + TRUNCATION_MARKER


def truncate_value(value: Any, config: TruncationConfig, depth: int = 0) -> Any:
    """Return a bounded copy of *value*.

    - strings longer than ``max_string_length`` are cut
    - lists keep ``max_array_length`` items plus a remaining-count marker
    - values at ``max_object_depth`` are replaced by a depth marker
    - dicts keep ``max_object_keys`` keys plus a more-properties marker
    """
    if depth >= config.max_object_depth:
        return DEPTH_MARKER

    if value is None or isinstance(value, (bool, int, float)):
        return value

    if isinstance(value, str):
        return truncate_string(value, config.max_string_length)

    if isinstance(value, (list, tuple)):
        items = [truncate_value(item, config, depth + 1) for item in value[: config.max_array_length]]
        remaining = len(value) - config.max_array_length
        if remaining > 0:
            items.append(f"... ({remaining} more items)")
        return items

    if isinstance(value, dict):
        result: dict[str, Any] = {}
        for count, (key, val) in enumerate(value.items()):
            if count >= config.max_object_keys:
                result[MORE_PROPERTIES_KEY] = MORE_PROPERTIES_VALUE
                break
            result[str(key)] = truncate_value(val, config, depth + 1)
        return result

    return truncate_string(str(value), config.max_string_length)
