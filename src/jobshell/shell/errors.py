"""Typed errors of the shell runtime.

Two kinds of error unwind the interpreter:

- ``ShError`` is local and recoverable. It stops at the nearest command
  boundary, where it becomes that command's exit code and a message on
  the command's stderr device.
- ``ProcessError`` is cancellation. It is not swallowed at command
  boundaries unless its ``depth`` has been used up, and is otherwise only
  absorbed by the top-level handler.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class SigEnum(str, Enum):
    """Signals understood by the process registry."""
    SIGHUP = "SIGHUP"
    SIGINT = "SIGINT"
    SIGQUIT = "SIGQUIT"
    SIGKILL = "SIGKILL"
    SIGTERM = "SIGTERM"
    SIGSTOP = "SIGSTOP"
    SIGCONT = "SIGCONT"


class ShError(Exception):
    """Recoverable error carrying a message and an exit code."""

    def __init__(self, message: str, exit_code: int = 1, original: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.exit_code = exit_code
        self.original = original

    def __str__(self) -> str:
        return self.message


class PathNotFoundError(ShError):
    """A path did not resolve inside the process context tree."""

    def __init__(self, path: str):
        super().__init__(f"not found: {path}", 1)
        self.path = path


class ParseError(Exception):
    """Source text is not valid shell."""


class IncompleteParse(ParseError):
    """Source text ended before the current construct was closed."""


class ProcessError(Exception):
    """Cancellation of a process.

    Attributes:
        code: Signal that caused the cancellation
        pid: Originating process
        session_key: Session of the originating process
        exit_code: Desired exit code, if any
        depth: If set, how many more process boundaries the error may
            cross; it is absorbed by the first command boundary reached
            once it is 0
    """

    def __init__(
        self,
        code: SigEnum,
        pid: int,
        session_key: str,
        exit_code: Optional[int] = None,
        depth: Optional[int] = None,
    ):
        super().__init__(code.value)
        self.code = code
        self.pid = pid
        self.session_key = session_key
        self.exit_code = exit_code
        self.depth = depth

    def __repr__(self) -> str:
        return (
            f"ProcessError({self.code.value}, pid={self.pid}, "
            f"session={self.session_key!r}, exit_code={self.exit_code}, depth={self.depth})"
        )


def kill_error(meta: Any, exit_code: Optional[int] = None, depth: Optional[int] = None) -> ProcessError:
    """Build a SIGKILL cancellation for the process described by ``meta``.

    Args:
        meta: Anything with ``pid`` and ``session_key`` attributes
        exit_code: Desired exit code
        depth: Number of process boundaries to unwind

    Returns:
        The error, not raised
    """
    return ProcessError(SigEnum.SIGKILL, meta.pid, meta.session_key, exit_code, depth)


def handle_process_error(node: Any, error: ProcessError) -> None:
    """Record a cancellation on ``node`` and re-raise it unless it is spent."""
    if error.exit_code is not None:
        node.exit_code = error.exit_code
    elif node.exit_code is None:
        node.exit_code = 137
    if error.depth is None or error.depth > 0:
        raise error
