"""Conversions between shell words and structured values."""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from typing import Any, Dict, Iterator, List

import yaml


def parse_js_arg(text: Any) -> Any:
    """Interpret a shell word as a structured value, falling back to the string.

    JSON is tried first, so ``42``, ``true`` and ``"foo"`` become an int, a
    bool and an unquoted string. Words that look like a mapping or a list
    are also accepted in YAML flow style, e.g. ``{foo: bar}``.

    Args:
        text: Word to interpret; non-strings are returned unchanged

    Returns:
        The parsed value, or ``text`` itself
    """
    if not isinstance(text, str):
        return text
    try:
        return json.loads(text)
    except ValueError:
        pass
    stripped = text.strip()
    if stripped[:1] in ("{", "["):
        try:
            parsed = yaml.safe_load(stripped)
        except yaml.YAMLError:
            return text
        if isinstance(parsed, (dict, list)):
            return parsed
    return text


def safe_json_parse(text: Any) -> Any:
    """Parse JSON, returning None on failure."""
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        return None


def stringify(value: Any) -> str:
    """Compact single-line rendering of a value."""
    if isinstance(value, str):
        return json.dumps(value)
    return json.dumps(value, separators=(",", ":"), default=_fallback)


def pretty(value: Any) -> str:
    """Indented multi-line rendering of a value."""
    return json.dumps(value, indent=2, default=_fallback)


def to_text(value: Any) -> str:
    """Render a value for interpolation: strings verbatim, others compactly."""
    return value if isinstance(value, str) else stringify(value)


def _fallback(value: Any) -> Any:
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return repr(value)


def text_to_tags(text: str) -> List[str]:
    """Split e.g. ``"always x=foo"`` into ``["always", "x=foo"]``."""
    return [tag for tag in text.split() if tag]


def tags_to_meta(tags: List[str]) -> Dict[str, Any]:
    """Convert tags into a mapping, bare tags becoming ``True``."""
    meta: Dict[str, Any] = {}
    for tag in tags:
        key, sep, value = tag.partition("=")
        meta[key] = parse_js_arg(value) if sep else True
    return meta


def truncate_one_line(text: str, max_length: int = 50) -> str:
    """First line of ``text``, truncated with an ellipsis."""
    line = text.split("\n", 1)[0]
    return line if len(line) <= max_length else f"{line[:max_length]}…"


def keys_deep(value: Any, prefix: str = "") -> List[str]:
    """Slash-separated paths of every nested key of a mapping or list."""
    return list(_iter_keys_deep(value, prefix))


def _iter_keys_deep(value: Any, prefix: str) -> Iterator[str]:
    if isinstance(value, Mapping):
        items = ((str(k), v) for k, v in value.items())
    elif isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
        items = ((str(i), v) for i, v in enumerate(value))
    else:
        return
    for key, child in items:
        path = f"{prefix}/{key}" if prefix else key
        yield path
        yield from _iter_keys_deep(child, path)


def add_values(left: Any, right: Any) -> Any:
    """Combine values for ``name+=value``.

    Mappings are merged shallowly into a new mapping; numbers add; lists
    and strings concatenate; anything else concatenates textually. Neither
    operand is modified.
    """
    if isinstance(left, dict) and isinstance(right, Mapping):
        return {**left, **right}
    if isinstance(left, bool) or isinstance(right, bool):
        return f"{to_text(left)}{to_text(right)}"
    if isinstance(left, (int, float)) and isinstance(right, (int, float)):
        return left + right
    if isinstance(left, list):
        return left + (list(right) if isinstance(right, list) else [right])
    return f"{to_text(left)}{to_text(right)}"
