"""Path resolution over a process's variable tree.

A process sees a tree rooted at ``/`` with the branches ``home`` (session
variables), ``etc``, ``lib``, ``api`` and ``args``. Paths such as
``/home/foo/0``, ``../etc`` or ``/lib/util/seq`` are resolved against this
tree relative to ``PWD``. A segment of the form ``name(args)`` calls the
member ``name`` with the JSON array ``[args]``.

Objects other than mappings and sequences are opaque unless their class
declares the attributes paths may reach, e.g. ``path_members = ("get_uid",)``.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping, MutableMapping, MutableSequence, Sequence
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from jobshell.shell.errors import PathNotFoundError, ShError

logger = logging.getLogger(__name__)

_FUNC_FORMAT_RE = re.compile(r"\(([^)]*)\)$")


def compute_normalized_parts(path: str, pwd: str) -> List[str]:
    """Split ``path`` into normalized absolute segments.

    Args:
        path: Absolute or PWD-relative path
        pwd: Current directory

    Returns:
        Segments without empty, ``.`` and ``..`` entries
    """
    abs_parts = path.split("/") if path.startswith("/") else pwd.split("/") + path.split("/")
    return normalize_abs_parts(abs_parts)


def normalize_abs_parts(abs_parts: List[str]) -> List[str]:
    normalized: List[str] = []
    for part in abs_parts:
        if not part or part == ".":
            continue
        if part == "..":
            normalized = normalized[:-1]
        else:
            normalized.append(part)
    return normalized


def match_func_format(segment: str) -> Optional[re.Match]:
    """Match a trailing ``(args)`` of a path segment."""
    return _FUNC_FORMAT_RE.search(segment)


def _child(agg: Any, segment: str) -> Any:
    if isinstance(agg, Mapping):
        if segment in agg:
            return agg[segment]
        raise KeyError(segment)
    if isinstance(agg, Sequence) and not isinstance(agg, (str, bytes)):
        try:
            return agg[int(segment)]
        except (ValueError, IndexError):
            raise KeyError(segment) from None
    if segment in getattr(type(agg), "path_members", ()):
        return getattr(agg, segment)
    raise KeyError(segment)


def resolve_normalized(parts: List[str], root: Any) -> Any:
    """Walk ``parts`` from ``root``.

    Mappings are walked by key and sequences by index. Other objects
    expose only the attributes their class lists in ``path_members``. A
    segment ``name(args)`` calls member ``name``.

    Raises:
        PathNotFoundError: If a segment does not exist
        ShError: If call arguments are not valid JSON
    """
    agg = root
    for segment in parts:
        matched = match_func_format(segment) if segment.endswith(")") else None
        try:
            if matched:
                try:
                    args = json.loads(f"[{matched.group(1)}]")
                except ValueError as e:
                    raise ShError(f"{segment}: arguments must be JSON", 1, e) from e
                member = _child(agg, segment[:matched.start()])
                agg = member(*args)
            else:
                agg = _child(agg, segment)
        except KeyError:
            raise PathNotFoundError("/" + "/".join(parts)) from None
    return agg


def resolve_path(path: str, root: Any, pwd: str) -> Any:
    """Resolve an absolute or PWD-relative path from ``root``."""
    return resolve_normalized(compute_normalized_parts(path, pwd), root)


def set_path(parts: List[str], root: Any, value: Any) -> None:
    """Assign ``value`` at ``parts`` below ``root``.

    Raises:
        ShError: If the parent does not exist or cannot hold children
    """
    if not parts:
        raise ShError("cannot assign to /", 1)
    try:
        parent = resolve_normalized(parts[:-1], root)
    except PathNotFoundError:
        raise ShError(f"cannot resolve /{'/'.join(parts)}", 1) from None

    leaf = parts[-1]
    if isinstance(parent, MutableMapping):
        parent[leaf] = value
    elif isinstance(parent, MutableSequence) and leaf.isdigit():
        index = int(leaf)
        if index < len(parent):
            parent[index] = value
        elif index == len(parent):
            parent.append(value)
        else:
            raise ShError(f"cannot resolve /{'/'.join(parts)}", 1)
    else:
        raise ShError(f"cannot resolve /{'/'.join(parts)}", 1)


def delete_path(parts: List[str], root: Any) -> bool:
    """Delete the entry at ``parts``; returns whether it existed."""
    if not parts:
        return False
    try:
        parent = resolve_normalized(parts[:-1], root)
    except PathNotFoundError:
        return False
    leaf = parts[-1]
    if isinstance(parent, MutableMapping) and leaf in parent:
        del parent[leaf]
        return True
    if isinstance(parent, MutableSequence) and leaf.isdigit() and int(leaf) < len(parent):
        del parent[int(leaf)]
        return True
    return False


@dataclass
class ProcessContext:
    """Explicit root of the tree a process resolves paths against.

    Attributes:
        home: Session variables
        etc: Session configuration values
        lib: Session libraries, e.g. ``lib["util"]``
        api: The process API
        args: Arguments of the running command
        meta: Meta of the running command
    """
    home: Dict[str, Any]
    etc: Dict[str, Any]
    lib: Dict[str, Any]
    api: Any = None
    args: List[Any] = field(default_factory=list)
    meta: Any = None

    @property
    def root(self) -> Dict[str, Any]:
        tree = {
            "home": self.home,
            "etc": self.etc,
            "lib": self.lib,
            "api": self.api,
            "args": self.args,
        }
        if "_" in self.home:
            tree["_"] = self.home["_"]
        return tree

    def resolve(self, path: str, pwd: str = "/") -> Any:
        return resolve_path(path, self.root, pwd)
