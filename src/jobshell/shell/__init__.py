"""Shell runtime: parser, interpreter, devices and job control.

Provides a registry of sessions whose processes are cooperative asyncio
tasks, an interpreter evaluating parsed shell source, and a terminal
adapter with a console REPL.
"""

from __future__ import annotations

from jobshell.shell.builtins import get_registry, is_builtin
from jobshell.shell.errors import PathNotFoundError, ProcessError, ShError, SigEnum, kill_error
from jobshell.shell.interpreter import Semantics
from jobshell.shell.messages import ShellIo, parse_inbound
from jobshell.shell.parser import parse, try_parse_buffer
from jobshell.shell.repl import ConsoleRepl, run_command, run_repl, run_script
from jobshell.shell.session import Process, ProcessStatus, Registry, Session
from jobshell.shell.tty import TtyShell

__all__ = [
    "ConsoleRepl",
    "Registry",
    "Session",
    "Process",
    "ProcessStatus",
    "Semantics",
    "TtyShell",
    "ShellIo",
    "ShError",
    "ProcessError",
    "PathNotFoundError",
    "SigEnum",
    "kill_error",
    "parse",
    "parse_inbound",
    "try_parse_buffer",
    "run_repl",
    "run_command",
    "run_script",
    "is_builtin",
    "get_registry",
]
