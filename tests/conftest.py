"""Shared fixtures: a registry, a session and a capturing front end."""

import asyncio
from typing import List

import pytest
import pytest_asyncio

from jobshell.lib.config_parser import SchedulerConfig, ShellConfig
from jobshell.shell.messages import (
    ErrorMessage,
    ExternalMessage,
    InfoMessage,
    OutputLine,
    SendHistoryLine,
    SendXtermPrompt,
)
from jobshell.shell.session import Registry
from jobshell.shell.text import strip_ansi


class Terminal:
    """Records what a front end would display for a session."""

    def __init__(self, session):
        self.session = session
        self.lines: List[str] = []
        self.errors: List[str] = []
        self.infos: List[str] = []
        self.prompts: List[str] = []
        self.external: List[dict] = []
        self.history_lines: List[SendHistoryLine] = []
        self.unsubscribe = session.tty_io.read(self.on_message)

    def on_message(self, msg):
        if isinstance(msg, OutputLine):
            self.lines.append(strip_ansi(msg.line))
        elif isinstance(msg, ErrorMessage):
            self.errors.append(msg.msg)
        elif isinstance(msg, InfoMessage):
            self.infos.append(strip_ansi(msg.msg))
        elif isinstance(msg, SendXtermPrompt):
            self.prompts.append(msg.prompt)
        elif isinstance(msg, ExternalMessage):
            self.external.append(msg.msg)
        elif isinstance(msg, SendHistoryLine):
            self.history_lines.append(msg)

    @property
    def tty(self):
        return self.session.tty_shell

    @property
    def exit_code(self) -> int:
        return self.session.last_exit["fg"]

    async def run(self, src: str) -> List[str]:
        """Type ``src`` line by line; return the lines output meanwhile."""
        start = len(self.lines)
        for line in src.split("\n"):
            await self.tty.execute(line)
        await self.tty.idle()
        return self.lines[start:]


@pytest.fixture
def config():
    """Configuration with fast scheduling and no profile."""
    return ShellConfig(
        profile="",
        scheduler=SchedulerConfig(loop_min_iteration_ms=1, poll_min_seconds=0.01),
    )


@pytest_asyncio.fixture
async def registry(config):
    registry = Registry(config)
    yield registry
    for key in list(registry.sessions):
        registry.remove_session(key)
    # Let killed background jobs unwind
    await asyncio.sleep(0.01)


@pytest_asyncio.fixture
async def session(registry):
    return registry.create_session("test")


@pytest_asyncio.fixture
async def term(session):
    return Terminal(session)


@pytest_asyncio.fixture
async def profiled(registry, term):
    """Terminal whose session has run the packaged profile."""
    registry.config.profile = None
    await term.tty.run_profile()
    return term
