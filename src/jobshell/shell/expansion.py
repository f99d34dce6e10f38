"""Word expansion helpers: brace expansion, quoting and whitespace.

Brace expansion handles comma lists (``{a,b}``), integer ranges with an
optional step and zero padding (``{01..10..2}``) and character ranges
(``{a..e}``), nested arbitrarily. A brace pair with neither a top-level
comma nor a valid range is left as it is.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Union

from jobshell.lib.values import to_text

_INT_RANGE_RE = re.compile(r"^(-?\d+)\.\.(-?\d+)(?:\.\.(-?\d+))?$")
_CHAR_RANGE_RE = re.compile(r"^([A-Za-z])\.\.([A-Za-z])(?:\.\.(-?\d+))?$")
_UNESCAPE_RE = re.compile(r"\\([^A-Za-z0-9])")
_DQUOTE_UNESCAPE_RE = re.compile(r'\\(["\\$`])')
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass
class Expanded:
    """Result of expanding a word or word part.

    Attributes:
        values: Expanded values; usually strings, but command substitution
            in an assignment forwards structured values
        value: The values joined by spaces
    """
    values: List[Any] = field(default_factory=list)
    value: str = ""

    @classmethod
    def of(cls, values: Union[str, Sequence[Any]]) -> Expanded:
        if isinstance(values, str):
            return cls([values], values)
        values = list(values)
        return cls(values, " ".join(to_text(v) for v in values))


def normalize_whitespace(word: str, trim: bool = True) -> List[str]:
    """Split a word on whitespace runs.

    Args:
        word: Text to split
        trim: If False, keep a single leading/trailing space on the first
            and last items, so callers can tell whether to join them with
            neighbouring text

    Returns:
        The words; empty if ``word`` is blank
    """
    if not word.strip():
        return []
    if trim:
        return _WHITESPACE_RE.sub(" ", word.strip()).split(" ")

    words = _WHITESPACE_RE.sub(" ", word).split(" ")
    if not words[0]:
        words.pop(0)
        words[0] = " " + words[0]
    if not words[-1]:
        words.pop()
        words[-1] = words[-1] + " "
    return words


def interpret_escape_sequences(text: str) -> str:
    """Interpret backslash escapes of ``$'...'`` strings."""
    simple = {
        "n": "\n", "t": "\t", "r": "\r", "b": "\b", "f": "\f",
        "e": "\x1b", "'": "'", '"': '"', "\\": "\\",
    }

    def replace(match: re.Match) -> str:
        if match.group(1):
            return chr(int(match.group(1), 16))
        char = match.group(2)
        return simple.get(char, "\\" + char)

    return re.sub(r"\\(?:x([0-9a-fA-F]{2})|(.))", replace, text, flags=re.DOTALL)


def literal(value: str, in_dquote: bool = False) -> List[str]:
    """Expand a literal word part.

    Inside double quotes only ``"``, ``\\``, ``$`` and backquote are
    unescaped and there is no brace expansion. Elsewhere braces are
    expanded and any escaped punctuation is unescaped.
    """
    value = value.replace("\\\n", "", 1)
    if in_dquote:
        return [_DQUOTE_UNESCAPE_RE.sub(r"\1", value)]
    return [_UNESCAPE_RE.sub(r"\1", x) for x in brace_expand(value)]


def brace_expand(text: str) -> List[str]:
    """Brace-expand ``text``, respecting backslash escapes."""
    found = _find_braces(text)
    if found is None:
        return [text]
    start, end, alternatives = found
    prefix, suffix = text[:start], text[end + 1:]
    suffixes = brace_expand(suffix)
    return [
        f"{prefix}{alt}{rest}"
        for option in alternatives
        for alt in brace_expand(option)
        for rest in suffixes
    ]


def _find_braces(text: str) -> Optional[tuple]:
    """Locate the first expandable brace pair.

    Returns:
        ``(start, end, alternatives)`` or None
    """
    i = 0
    while i < len(text):
        char = text[i]
        if char == "\\":
            i += 2
            continue
        if char == "{":
            end = _matching_brace(text, i)
            if end is not None:
                body = text[i + 1:end]
                alternatives = _range_strings(body)
                if alternatives is None:
                    commas = _split_top_level(body)
                    if len(commas) > 1:
                        alternatives = commas
                if alternatives is not None:
                    return i, end, alternatives
        i += 1
    return None


def _matching_brace(text: str, start: int) -> Optional[int]:
    depth = 0
    i = start
    while i < len(text):
        char = text[i]
        if char == "\\":
            i += 2
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return i
        i += 1
    return None


def _split_top_level(body: str) -> List[str]:
    parts, depth, current, i = [], 0, [], 0
    while i < len(body):
        char = body[i]
        if char == "\\":
            current.append(body[i:i + 2])
            i += 2
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
        elif char == "," and depth == 0:
            parts.append("".join(current))
            current = []
            i += 1
            continue
        current.append(char)
        i += 1
    parts.append("".join(current))
    return parts


def _range_strings(body: str) -> Optional[List[str]]:
    match = _INT_RANGE_RE.match(body)
    if match:
        start_text, end_text, step_text = match.groups()
        start, end = int(start_text), int(end_text)
        step = abs(int(step_text)) if step_text else 1
        if step == 0:
            return None
        width = 0
        if _has_leading_zero(start_text) or _has_leading_zero(end_text):
            width = max(len(start_text), len(end_text))
        direction = 1 if end >= start else -1
        numbers = range(start, end + direction, step * direction)
        return [str(n).zfill(width) if width else str(n) for n in numbers]

    match = _CHAR_RANGE_RE.match(body)
    if match:
        start_char, end_char, step_text = match.groups()
        step = abs(int(step_text)) if step_text else 1
        if step == 0:
            return None
        start, end = ord(start_char), ord(end_char)
        direction = 1 if end >= start else -1
        return [chr(c) for c in range(start, end + direction, step * direction)]
    return None


def _has_leading_zero(text: str) -> bool:
    digits = text.lstrip("-")
    return len(digits) > 1 and digits.startswith("0")
