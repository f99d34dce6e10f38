"""REPL (Read-Eval-Print Loop) for interactive shell.

Drives a session's terminal from the console: lines typed on stdin are
sent to the terminal, and its messages are printed to stdout or stderr.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

from jobshell.shell.messages import (
    ErrorMessage,
    ExternalMessage,
    InfoMessage,
    Message,
    OutputLine,
    SendHistoryLine,
    SendXtermPrompt,
)
from jobshell.shell.session import Registry, Session
from jobshell.shell.text import Ansi

logger = logging.getLogger(__name__)

try:
    import readline
    HAS_READLINE = True
except ImportError:
    HAS_READLINE = False
    logger.debug("readline not available - line editing disabled")


class ConsoleRepl:
    """Console front end of a session."""

    def __init__(self, registry: Registry, session: Session, profile: bool = True):
        """Initialize REPL.

        Args:
            registry: Registry owning the session
            session: Session to drive
            profile: Run the profile before the first prompt
        """
        self.registry = registry
        self.session = session
        self.profile = profile
        self.prompt = f"{registry.config.prompt} "
        self.running = False
        self._unsubscribe = session.tty_io.read(self.on_message)

        if HAS_READLINE:
            self._setup_readline()

    @property
    def tty(self):
        return self.session.tty_shell

    def _setup_readline(self) -> None:
        """Seed readline with the session's history."""
        readline.clear_history()
        for line in self.tty.get_history():
            readline.add_history(line)
        readline.set_history_length(self.registry.config.history.max_lines)

    def on_message(self, msg: Message) -> None:
        if isinstance(msg, OutputLine):
            print(msg.line, flush=True)
        elif isinstance(msg, ErrorMessage):
            print(f"{Ansi.RED}{msg.msg}{Ansi.RESET}", file=sys.stderr, flush=True)
        elif isinstance(msg, InfoMessage):
            print(msg.msg, flush=True)
        elif isinstance(msg, SendXtermPrompt):
            self.prompt = msg.prompt
        elif isinstance(msg, ExternalMessage):
            logger.debug(f"{self.session.key}: {msg.msg}")
        elif isinstance(msg, SendHistoryLine):
            # Line editing is readline's job
            pass

    async def run(self) -> None:
        """Run the REPL loop."""
        loop = asyncio.get_running_loop()
        self.running = True
        self._print_welcome()
        if self.profile:
            await self.tty.run_profile()

        try:
            loop.add_signal_handler(signal.SIGINT, self.tty.interrupt)
        except (NotImplementedError, RuntimeError):
            logger.debug("SIGINT handler unavailable - Ctrl+C will exit")

        try:
            while self.running:
                try:
                    line = await loop.run_in_executor(None, input, self.prompt)
                except EOFError:
                    # Ctrl+D
                    print()
                    break
                await self.tty.execute(line)
        finally:
            try:
                loop.remove_signal_handler(signal.SIGINT)
            except (NotImplementedError, RuntimeError):
                pass
            self.close()
            self._print_goodbye()

    def close(self) -> None:
        """Stop printing the session's messages."""
        self._unsubscribe()

    def _print_welcome(self) -> None:
        print(f"jobshell - session {self.session.key}")
        print("Type help for available commands")
        print()

    def _print_goodbye(self) -> None:
        print("Goodbye!")


async def open_session(registry: Registry, session_key: Optional[str] = None) -> Session:
    """Create a session, or return it if it already exists."""
    session_key = session_key or registry.config.session_key
    if session_key in registry.sessions:
        return registry.sessions[session_key]
    return registry.create_session(session_key)


async def run_repl(
    registry: Optional[Registry] = None,
    session_key: Optional[str] = None,
    profile: bool = True,
) -> None:
    """Run interactive REPL.

    Args:
        registry: Optional registry
        session_key: Session to open, defaulting to the configured one
        profile: Run the profile first
    """
    registry = registry or Registry()
    session = await open_session(registry, session_key)
    try:
        await ConsoleRepl(registry, session, profile=profile).run()
    finally:
        registry.remove_session(session.key)


async def run_command(
    command: str,
    registry: Optional[Registry] = None,
    session_key: Optional[str] = None,
    profile: bool = True,
) -> int:
    """Run a command non-interactively, printing its output.

    Args:
        command: Shell source, possibly several lines
        registry: Optional registry
        session_key: Session to run in
        profile: Run the profile first

    Returns:
        Exit code of the last foreground command
    """
    registry = registry or Registry()
    session = await open_session(registry, session_key)
    repl = ConsoleRepl(registry, session, profile=profile)
    try:
        if profile:
            await session.tty_shell.run_profile()
        for line in command.split("\n"):
            await session.tty_shell.execute(line)
        await session.tty_shell.idle()
        await session.tty_shell.wait_background()
        if session.tty_shell.buffer:
            registry.write_msg(session.key, "unexpected end of input", "error")
            return 2
        return session.last_exit["fg"]
    finally:
        repl.close()
        registry.remove_session(session.key)


async def run_script(
    script_path: Path,
    registry: Optional[Registry] = None,
    session_key: Optional[str] = None,
    profile: bool = True,
) -> int:
    """Run commands from a script file.

    Args:
        script_path: Path to script file
        registry: Optional registry
        session_key: Session to run in
        profile: Run the profile first

    Returns:
        Exit code of the last foreground command
    """
    logger.debug(f"Running script {script_path}")
    with open(script_path) as f:
        source = f.read()
    return await run_command(source, registry, session_key, profile)
