"""
Type-Tagged Envelope Decoding

Upstream producers serialize some payloads with a class tag, as a
two-element array: ["com.example.OIMetrics", {...}]. Enum fields arrive
the same way: ["com.example.Interpretation", "LONG_UNWINDING"].

This module is the only place that knows about the envelope; readers
call it and work with plain dicts and strings afterwards.
"""

import json
from typing import Any, Optional


def unwrap(node: Any) -> Any:
    """
    Strip a [type_tag, payload] envelope if present.

    Args:
        node: Decoded JSON value

    Returns:
        The payload, or node unchanged when it is not an envelope
    """
    if isinstance(node, list) and len(node) == 2 and isinstance(node[0], str):
        return node[1]
    return node


def loads(raw: Optional[str]) -> Any:
    """
    Parse JSON and unwrap a root envelope.

    Returns None for empty or malformed input.
    """
    if not raw:
        return None
    try:
        return unwrap(json.loads(raw))
    except (ValueError, TypeError):
        return None


def get_object(data: Any, field: str) -> Optional[dict]:
    """Read a nested object field, unwrapping its envelope."""
    if not isinstance(data, dict):
        return None
    node = unwrap(data.get(field))
    return node if isinstance(node, dict) else None


def get_text(data: Any, field: str) -> Optional[str]:
    """Read a string (or enum) field, unwrapping its envelope."""
    if not isinstance(data, dict):
        return None
    node = unwrap(data.get(field))
    if node is None or isinstance(node, (dict, list)):
        return None
    return str(node)


def get_float(data: Any, field: str, default: float = 0.0) -> float:
    """Read a numeric field, falling back to default when absent or not numeric."""
    if not isinstance(data, dict):
        return default
    node = unwrap(data.get(field))
    if isinstance(node, bool) or node is None:
        return default
    try:
        return float(node)
    except (ValueError, TypeError):
        return default
