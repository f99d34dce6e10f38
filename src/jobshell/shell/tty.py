"""Terminal adapter of a session.

:class:`TtyShell` sits between a front end (speaking the messages of
:mod:`jobshell.shell.messages`) and the interpreter. It buffers input
lines until they parse, runs each complete command as the session's
leading process (pid 0), and is itself the device bound to descriptors
0, 1 and 2 of that process.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, List, Optional, Set, Tuple

from jobshell.lib.package_data import get_default_profile
from jobshell.lib.values import stringify
from jobshell.shell.devices import EOF, DataChunk, Device, ReadResult
from jobshell.shell.errors import ProcessError, SigEnum, ShError
from jobshell.shell.interpreter import Semantics
from jobshell.shell.messages import (
    ErrorMessage,
    OutputLine,
    ReqHistoryLine,
    SendHistoryLine,
    SendKillSig,
    SendLine,
    SendXtermPrompt,
    ShellIo,
    TtyReceivedLine,
)
from jobshell.shell.nodes import File, Meta
from jobshell.shell.parser import try_parse_buffer
from jobshell.shell.session import Process, ProcessStatus
from jobshell.shell.text import Ansi

if TYPE_CHECKING:
    from jobshell.shell.session import Registry

logger = logging.getLogger(__name__)


@dataclass
class _Input:
    line: str
    done: asyncio.Future


class TtyShell(Device):
    """Interactive terminal of one session.

    Lines sent by the front end are queued. A process reading the terminal
    takes queued lines first; otherwise a worker parses them, possibly
    over several lines, and runs each complete command.
    """

    def __init__(self, registry: "Registry", session_key: str, io: ShellIo, history: List[str]):
        """Initialize terminal.

        Args:
            registry: Owning registry
            session_key: Session identifier
            io: Message hub shared with the front end
            history: Previously entered commands, most recent last
        """
        super().__init__(f"/dev/tty-{session_key}")
        self.registry = registry
        self.session_key = session_key
        self.io = io
        self.history = list(history)
        self.history_enabled = True
        self.semantics = Semantics(registry)
        self.process: Optional[Process] = None
        self.buffer: List[str] = []
        self._inputs: asyncio.Queue = asyncio.Queue()
        self._readers: List[asyncio.Future] = []
        self._background: Set[asyncio.Task] = set()
        self._worker: Optional[asyncio.Task] = None
        self._current: Optional[_Input] = None
        self._cleanups: List[Callable[[], Any]] = []

    @property
    def config(self):
        return self.registry.config

    @property
    def initialized(self) -> bool:
        return self.process is not None

    def initialise(self) -> None:
        """Create the leading process and start consuming lines."""
        self._cleanups.append(self.io.handle_writes(self.on_message))
        # pid = ppid = pgid = 0
        self.process = self.registry.create_process(self.session_key, ppid=0, pgid=0)
        self._worker = asyncio.get_running_loop().create_task(self._consume_inputs())

    def dispose(self) -> None:
        for cleanup in self._cleanups:
            cleanup()
        self._cleanups.clear()
        if self._worker is not None:
            self._worker.cancel()
        self.finished_reading()

    # Messages

    def on_message(self, msg: Any) -> None:
        if isinstance(msg, ReqHistoryLine):
            line, next_index = self.get_history_line(msg.history_index)
            self.io.write_to_readers(SendHistoryLine(line=line, next_index=next_index))
        elif isinstance(msg, SendLine):
            self.send_line(msg.line)
        elif isinstance(msg, SendKillSig):
            self.interrupt()
        else:
            logger.warning(f"{self.key}: unexpected message {msg!r}")

    def send_line(self, line: str) -> asyncio.Future:
        """Deliver a line, returning a future resolved once it is consumed."""
        done = asyncio.get_running_loop().create_future()
        while self._readers:
            reader = self._readers.pop(0)
            if not reader.done():
                reader.set_result(line)
                done.set_result(None)
                self.io.write_to_readers(TtyReceivedLine())
                return done
        self._inputs.put_nowait(_Input(line, done))
        return done

    async def execute(self, line: str) -> None:
        """Send a line and wait until it has run, or until it reads the terminal."""
        await self.send_line(line)

    async def idle(self) -> None:
        """Wait until every queued line has been consumed."""
        await self._inputs.join()

    async def wait_background(self) -> None:
        """Wait for the background jobs started so far."""
        if self._background:
            await asyncio.wait(set(self._background))

    def interrupt(self) -> None:
        """Ctrl-C: kill the foreground job, even while paused."""
        self.buffer.clear()
        error = ProcessError(SigEnum.SIGKILL, 0, self.session_key)
        readers, self._readers = self._readers, []
        for reader in readers:
            if not reader.done():
                reader.set_exception(error)
        self.prompt(self.config.prompt)
        self.semantics.handle_top_level_process_error(error)

    def prompt(self, prompt: str) -> None:
        """Ask the front end for a line; ``prompt`` must not contain ANSI codes."""
        self.io.write_to_readers(SendXtermPrompt(prompt=f"{prompt} "))

    # History

    def get_history(self) -> List[str]:
        return list(self.history)

    def get_history_line(self, line_index: int) -> Tuple[str, int]:
        """History line counted back from the most recent, and the clamped index."""
        max_index = len(self.history) - 1
        line = self.history[max_index - line_index] if 0 <= line_index <= max_index else ""
        return line, min(max(line_index, 0), max(max_index, 0))

    def store_src_line(self, src_line: str) -> None:
        if self.history and self.history[-1] == src_line:
            return
        self.history.append(src_line)
        del self.history[:-self.config.history.max_lines]
        self.registry.persist_history(self.session_key)

    # Running commands

    async def _consume_inputs(self) -> None:
        while True:
            item = await self._inputs.get()
            self._current = item
            try:
                await self.try_parse(item.line)
            finally:
                self._current = None
                self._release(item)
                self._inputs.task_done()

    def _release(self, item: _Input) -> None:
        """Let the front end send its next line."""
        if not item.done.done():
            item.done.set_result(None)
            self.io.write_to_readers(TtyReceivedLine())

    def provide_context(self, parsed: File) -> None:
        """Attach the meta of the leading process to a parsed command."""
        parsed.meta = Meta(
            session_key=self.session_key,
            pid=0,
            ppid=0,
            pgid=0,
            fd={0: self.key, 1: self.key, 2: self.key},
            verbose=self.registry.get_session(self.session_key).verbose,
        )

    async def try_parse(self, line: str) -> None:
        """Add a line to the buffer and run it once it parses."""
        try:
            self.buffer.append(line)
            result = try_parse_buffer(list(self.buffer))

            if result.key == "failed":
                logger.debug(f"{self.key}: parse failed: {result.error}")
                self.io.write_to_readers(ErrorMessage(msg=f"parse error: {result.error}"))
                self.buffer.clear()
                self.prompt(self.config.prompt)
            elif result.key == "incomplete":
                self.prompt(self.config.continuation_prompt)
            else:
                self.buffer.clear()
                src = result.parsed.src.strip()
                if src and self.history_enabled:
                    self.store_src_line(src)
                self.process.src = src
                self.provide_context(result.parsed)
                await self.spawn(result.parsed, leading=True)
                self.prompt(self.config.prompt)
        except ProcessError as e:
            self.semantics.handle_top_level_process_error(e)
            self.prompt(self.config.prompt)
        except ShError as e:
            self.io.write_to_readers(ErrorMessage(msg=e.message))
            self.prompt(self.config.prompt)
        except Exception:
            logger.exception(f"{self.key}: unexpected error while running {line!r}")
            self.prompt(self.config.prompt)
        finally:
            self.process.status = ProcessStatus.SUSPENDED
            self.process.ptags = {}
            self.registry.persist_home(self.session_key)

    async def run_profile(self) -> None:
        """Run the profile line by line, as if typed, without recording history.

        The profile is the ``PROFILE`` variable if set, else the configured
        profile, else the packaged default.
        """
        profile = self.registry.get_var(Meta(self.session_key), "PROFILE")
        if not profile:
            profile = self.config.profile if self.config.profile is not None else get_default_profile()

        self.registry.write_msg(
            self.session_key,
            f"{Ansi.BLUE}{self.session_key}{Ansi.WHITE} running profile{Ansi.RESET}",
        )
        self.history_enabled = False
        try:
            for line in str(profile).split("\n"):
                await self.try_parse(line)
            if self.buffer:
                self.io.write_to_readers(ErrorMessage(msg="profile: unexpected end of input"))
                self.buffer.clear()
        finally:
            self.history_enabled = True
        self.registry.write_external(self.session_key, {"key": "interactive", "act": "started"})
        self.prompt(self.config.prompt)

    def create_child(
        self,
        file: File,
        local_var: bool = False,
        positionals: Optional[List[Any]] = None,
        cleanups: Optional[List[Callable[..., Any]]] = None,
        new_group: bool = False,
    ) -> Process:
        """Register the process that will run ``file``.

        ``file.meta`` still names the parent; its ``pid`` (and ``pgid``
        when ``new_group`` is set) is replaced by the child's.

        Args:
            file: Tree to run
            local_var: Give the child its own ``PWD`` and ``OLDPWD``
            positionals: ``$1``, ``$2``, ..., defaulting to the parent's
            cleanups: Extra cleanups run if the child is killed
            new_group: Lead a new process group, e.g. a background job

        Returns:
            The child process
        """
        meta = file.meta
        session = self.registry.get_session(meta.session_key)
        parent = self.registry.get_process(meta)
        if parent is None:
            raise ShError(f"parent process {meta.pid} no longer exists", 1)

        process = self.registry.create_process(
            meta.session_key,
            ppid=meta.ppid,
            pgid=None if new_group else meta.pgid,
            src=file.src,
            positionals=parent.positionals[1:] if positionals is None else positionals,
            ptags=parent.ptags,
        )
        meta.pid = process.pid
        meta.pgid = process.pgid
        process.cleanups.extend(cleanups or [])

        # Shallow copy: values are shared, so writes must replace rather than mutate them
        process.inherit_var = {**parent.inherit_var, **parent.local_var}
        if local_var:
            process.local_var["PWD"] = process.inherit_var.get("PWD", session.var.get("PWD"))
            process.local_var["OLDPWD"] = process.inherit_var.get("OLDPWD", session.var.get("OLDPWD"))
        return process

    async def spawn(
        self,
        file: File,
        leading: bool = False,
        local_var: bool = False,
        positionals: Optional[List[Any]] = None,
        cleanups: Optional[List[Callable[..., Any]]] = None,
    ) -> None:
        """Run ``file`` to completion in a new process, or in the leading one.

        Args:
            file: Tree to run, whose meta names the parent process
            leading: Run as the session's leading process
            local_var: Give the child its own ``PWD`` and ``OLDPWD``
            positionals: ``$1``, ``$2``, ..., defaulting to the parent's
            cleanups: Extra cleanups run if the child is killed

        Raises:
            ProcessError: If the process was killed, unless spent
            ShError: If the tree failed outside of any command
        """
        if leading:
            self.process.status = ProcessStatus.RUNNING
        else:
            self.create_child(file, local_var=local_var, positionals=positionals, cleanups=cleanups)
        await self._run(file, leading)

    def start_background(self, file: File, process: Process) -> asyncio.Task:
        """Run ``file`` as a background job in ``process`` (see :meth:`create_child`)."""

        async def run_job() -> None:
            try:
                await self._run(file, leading=False)
            except ProcessError as e:
                self.semantics.handle_top_level_process_error(e, background=True)
            except Exception:
                logger.exception(f"{self.key}: background job {process.pid} failed")

        task = asyncio.get_running_loop().create_task(run_job())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _run(self, file: File, leading: bool) -> None:
        meta = file.meta
        is_leader = meta.pid == meta.pgid and meta.pid != 0
        if is_leader:
            self.registry.write_external(meta.session_key, {
                "key": "process-leader",
                "act": "started",
                "pid": meta.pid,
            })
        logger.debug(f"{meta.session_key}: {meta.pid}: started {file.src!r}")

        try:
            await self.semantics.file(file)
            if meta.verbose:
                background = " (background)" if meta.background else ""
                logger.info(f"{meta.session_key}{background}: {meta.pid}: exit {file.exit_code}")
        except ProcessError as e:
            background = " (background)" if meta.pgid else ""
            logger.debug(f"{meta.session_key}{background}: {meta.pid}: {e.code.value}")
            # Ctrl-C exits 130 unless overridden
            file.exit_code = 130 if e.exit_code is None else e.exit_code
            if not leading and e.depth is not None and e.depth > 0:
                e.depth -= 1
            raise
        except ShError as e:
            file.exit_code = e.exit_code
            raise
        finally:
            self.registry.set_last_exit_code(meta, file.exit_code)
            if not leading and meta.pid:
                self.registry.remove_process(meta.pid, meta.session_key)
            if is_leader:
                self.registry.write_external(meta.session_key, {
                    "key": "process-leader",
                    "act": "ended",
                    "pid": meta.pid,
                    "exitCode": file.exit_code,
                })

    # Device

    async def read_data(self, once: bool = False, chunks: bool = False) -> ReadResult:
        if not self._inputs.empty():
            item = self._inputs.get_nowait()
            self._release(item)
            self._inputs.task_done()
            return ReadResult(data=item.line)

        reader = asyncio.get_running_loop().create_future()
        self._readers.append(reader)
        if self._current is not None:
            # The running command now waits for the front end
            self._release(self._current)
        try:
            line = await reader
        finally:
            if reader in self._readers:
                self._readers.remove(reader)
        return ReadResult(eof=True) if line is EOF else ReadResult(data=line)

    async def write_data(self, value: Any) -> None:
        if value is EOF:
            return
        items = value.items if isinstance(value, DataChunk) else [value]
        for item in items:
            if isinstance(item, str):
                for line in item.split("\n"):
                    self.io.write_to_readers(OutputLine(line=line))
            elif item is not None:
                # e.g. `${_/foo}` refers to the last non-string output
                self.registry.get_session(self.session_key).var["_"] = item
                self.io.write_to_readers(OutputLine(line=stringify(item)))

    def finished_reading(self) -> None:
        """Release pending readers; at most one interactive process reads the terminal."""
        self.buffer.clear()
        readers, self._readers = self._readers, []
        for reader in readers:
            if not reader.done():
                reader.set_result(EOF)
