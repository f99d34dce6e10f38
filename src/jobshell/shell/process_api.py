"""Per-process API: reading, sleeping, callbacks and helpers.

Module-level coroutines implement the suspension points of a process.
Each of them is killable: it registers a cleanup that fails the pending
operation with a kill error, and removes that cleanup once finished.
:class:`ProcessApi` bundles them for the command being run, and is what
``run`` bodies and library generators receive as ``api``.
"""

from __future__ import annotations

import argparse
import asyncio
import inspect
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from jobshell.lib.values import parse_js_arg, pretty, stringify
from jobshell.shell.devices import EOF, DataChunk, ReadResult, is_data_chunk
from jobshell.shell.errors import ShError, kill_error
from jobshell.shell.nodes import Meta
from jobshell.shell.session import Process, ProcessStatus, Registry
from jobshell.shell.text import Ansi

logger = logging.getLogger(__name__)


def is_tty_at(meta: Meta, fd: int = 0) -> bool:
    """Whether descriptor ``fd`` is bound to a terminal."""
    return meta.fd.get(fd, "").startswith("/dev/tty-")


def add_stdin_to_args(datum: Any, args: List[Any]) -> List[Any]:
    """Replace the first ``-`` operand by ``datum``, or append it."""
    args = list(args)
    if "-" in args:
        args[args.index("-")] = datum
    else:
        args.append(datum)
    return args


def _remove(callbacks: List[Callable], callback: Callable) -> None:
    if callback in callbacks:
        callbacks.remove(callback)


async def killable(process: Optional[Process], meta: Meta, aw: Awaitable[Any]) -> Any:
    """Await ``aw`` unless the process is killed first.

    The operation and the kill are raced; whichever completes first wins
    and the other is cancelled.

    Raises:
        ProcessError: If the process is killed before ``aw`` completes
    """
    if process is None:
        return await aw
    if process.status == ProcessStatus.KILLED:
        if inspect.iscoroutine(aw):
            aw.close()
        raise kill_error(meta)

    killed = asyncio.get_running_loop().create_future()

    def on_kill(sigint: bool = False) -> None:
        if not killed.done():
            killed.set_result(None)

    process.cleanups.append(on_kill)
    task = asyncio.ensure_future(aw)
    try:
        done, _ = await asyncio.wait({task, killed}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        _remove(process.cleanups, on_kill)

    if task in done:
        return task.result()
    task.cancel()
    raise kill_error(meta)


async def await_resume(process: Process, meta: Meta) -> None:
    """Wait until the process is resumed.

    Raises:
        ProcessError: If the process is killed meanwhile
    """
    future = asyncio.get_running_loop().create_future()

    def on_resume() -> bool:
        if not future.done():
            future.set_result(None)
        return True

    def on_cleanup(sigint: bool = False) -> None:
        if not future.done():
            future.set_exception(kill_error(meta))

    process.on_resumes.append(on_resume)
    process.cleanups.append(on_cleanup)
    try:
        await future
    finally:
        _remove(process.on_resumes, on_resume)
        _remove(process.cleanups, on_cleanup)


async def pre_process_read(process: Optional[Process], meta: Meta) -> None:
    """Fail if killed, wait if suspended; run before reading a device."""
    if process is None:
        return
    if process.status == ProcessStatus.KILLED:
        raise kill_error(meta)
    if process.status == ProcessStatus.SUSPENDED:
        await await_resume(process, meta)


pre_process_write = pre_process_read


async def read_once(registry: Registry, meta: Meta, chunks: bool = False) -> ReadResult:
    """Read one value (or one chunk) from stdin.

    Raises:
        ShError: If a background process tries to read the terminal
        ProcessError: If the process is killed while waiting
    """
    process = registry.get_process(meta)
    device = registry.resolve(0, meta)
    if meta.background and is_tty_at(meta, 0):
        raise ShError("background process tried to read tty", 1)

    while True:
        await pre_process_read(process, meta)
        result = await killable(process, meta, device.read_data(True, chunks))
        if result.eof or result.data is not None:
            return result


async def read(registry: Registry, meta: Meta, chunks: bool = False) -> Any:
    """Read one value from stdin, or :data:`EOF`."""
    result = await read_once(registry, meta, chunks)
    return EOF if result.eof else result.data


async def sleep(registry: Registry, meta: Meta, seconds: float) -> None:
    """Sleep, pausing the countdown while the process is suspended.

    Raises:
        ProcessError: If the process is killed while sleeping
    """
    process = registry.get_process(meta)
    if process is None:
        await asyncio.sleep(seconds)
        return
    if process.status == ProcessStatus.KILLED:
        raise kill_error(meta)

    loop = asyncio.get_running_loop()
    finished = loop.create_future()
    state: Dict[str, Any] = {"remaining": max(seconds, 0), "started": 0.0, "handle": None}

    def finish() -> None:
        if not finished.done():
            finished.set_result(None)

    def on_resume() -> bool:
        if state["handle"] is None:
            state["started"] = loop.time()
            state["handle"] = loop.call_later(state["remaining"], finish)
        return False

    def on_suspend(global_: bool = False) -> bool:
        if state["handle"] is not None:
            state["handle"].cancel()
            state["handle"] = None
            state["remaining"] -= loop.time() - state["started"]
        return False

    def on_cleanup(sigint: bool = False) -> None:
        if state["handle"] is not None:
            state["handle"].cancel()
        if not finished.done():
            finished.set_exception(kill_error(meta))

    process.on_suspends.append(on_suspend)
    process.on_resumes.append(on_resume)
    process.cleanups.append(on_cleanup)
    if process.status == ProcessStatus.RUNNING:
        on_resume()
    try:
        await finished
    finally:
        if state["handle"] is not None:
            state["handle"].cancel()
        _remove(process.on_suspends, on_suspend)
        _remove(process.on_resumes, on_resume)
        _remove(process.cleanups, on_cleanup)


class _OptionParser(argparse.ArgumentParser):
    def error(self, message: str):
        raise ShError(message, 1)


def get_opts(
    args: Iterable[Any],
    boolean: Iterable[str] = (),
    string: Iterable[str] = (),
) -> Tuple[Dict[str, Any], List[Any]]:
    """Parse options out of command arguments.

    Single-character names become ``-x`` flags and longer names
    ``--name``. Unknown options are kept as operands.

    Args:
        args: Command arguments; non-strings are always operands
        boolean: Names of flags
        string: Names of options taking a value

    Returns:
        ``(opts, operands)``, where ``opts`` maps every name to its value

    Raises:
        ShError: If an option is missing its value
    """
    parser = _OptionParser(add_help=False, allow_abbrev=False, prog="")
    for name in boolean:
        parser.add_argument(f"-{name}" if len(name) == 1 else f"--{name}", dest=name, action="store_true")
    for name in string:
        parser.add_argument(f"-{name}" if len(name) == 1 else f"--{name}", dest=name, default=None)

    args = list(args)
    placeholders = {}
    tokens = []
    for i, arg in enumerate(args):
        if isinstance(arg, str):
            tokens.append(arg)
        else:
            token = f"\0{i}"
            placeholders[token] = arg
            tokens.append(token)

    namespace, extras = parser.parse_known_args(tokens)
    operands = [placeholders.get(x, x) for x in extras]
    return vars(namespace), operands


class ProcessApi:
    """API of the process running a command."""

    eof = EOF

    # Members reachable through paths such as `/api/get_uid()`
    path_members = (
        "add_stdin_to_args",
        "data_chunk",
        "eof",
        "get_uid",
        "is_data_chunk",
        "is_running",
        "is_tty_at",
        "json",
        "parse_js_arg",
        "pretty",
    )

    def __init__(self, registry: Registry, meta: Meta):
        self.registry = registry
        self.meta = meta

    @property
    def process(self) -> Optional[Process]:
        return self.registry.get_process(self.meta)

    def get_process(self) -> Optional[Process]:
        return self.process

    # Callbacks

    def add_cleanup(self, cleanup: Callable[..., Any]) -> Callable[..., Any]:
        """Run ``cleanup(sigint)`` when the process is killed; returns it."""
        self.process.cleanups.append(cleanup)
        return cleanup

    def add_suspend(self, callback: Callable[[bool], Any]) -> None:
        """Run ``callback(global_)`` on suspend; it is kept until it returns truthy."""
        self.process.on_suspends.append(callback)

    def add_resume(self, callback: Callable[[], Any]) -> None:
        """Run ``callback()`` on resume; it is kept until it returns truthy."""
        self.process.on_resumes.append(callback)

    async def await_resume(self) -> None:
        await await_resume(self.process, self.meta)

    def throw_on_pause(self, pause_error: BaseException, global_: Optional[bool] = None) -> asyncio.Future:
        """Future failing with ``pause_error`` once the process is suspended.

        Args:
            pause_error: Exception to fail with
            global_: Only react to whole-session pauses (True), single
                job stops (False), or either (None)
        """
        future = asyncio.get_running_loop().create_future()

        def on_suspend(is_global: bool) -> bool:
            if global_ is not None and global_ != is_global:
                return False
            if not future.done():
                future.set_exception(pause_error)
            return True

        self.process.on_suspends.append(on_suspend)
        return future

    # IO

    async def read(self, chunks: bool = False) -> Any:
        """Read one value from stdin, or :attr:`eof`."""
        return await read(self.registry, self.meta, chunks)

    async def sleep(self, seconds: float) -> None:
        await sleep(self.registry, self.meta, seconds)

    async def write_error(self, message: str) -> None:
        device = self.registry.resolve(2, self.meta)
        await device.write_data(f"{Ansi.RED}{message}{Ansi.RESET}")

    async def eager_read_loop(
        self,
        loop_body: Callable[[Any], Awaitable[Any]],
        on_interrupt: Optional[Callable[[Any], Any]] = None,
    ) -> None:
        """Process stdin values, abandoning a value when the next one arrives.

        The handler of each value races the next read. If the read wins,
        the handler is cancelled, ``on_interrupt(value)`` is called and the
        new value is handled. End of stream lets the last handler finish.
        """
        datum = await self.read()
        while datum is not EOF:
            body = asyncio.ensure_future(loop_body(datum))
            reader = asyncio.ensure_future(self.read())
            try:
                done, _ = await asyncio.wait({body, reader}, return_when=asyncio.FIRST_COMPLETED)
            except asyncio.CancelledError:
                body.cancel()
                reader.cancel()
                raise

            if body in done:
                if body.exception() is not None:
                    reader.cancel()
                    raise body.exception()
                datum = await reader
                continue

            if reader.exception() is not None:
                body.cancel()
                raise reader.exception()
            next_datum = reader.result()
            if next_datum is EOF:
                await body
            else:
                body.cancel()
                await asyncio.wait({body})
                if on_interrupt is not None:
                    result = on_interrupt(datum)
                    if inspect.isawaitable(result):
                        await result
            datum = next_datum

    async def poll(self, args: List[Any]):
        """Yield 1, 2, 3, ... every ``args[0]`` seconds (default 1)."""
        try:
            seconds = float(parse_js_arg(args[0])) if args else 1.0
        except (TypeError, ValueError):
            seconds = 1.0
        delay = max(seconds, self.registry.config.scheduler.poll_min_seconds)
        count = 1
        while True:
            yield count
            count += 1
            await self.sleep(delay)

    # Errors and signals

    def get_kill_error(self, exit_code: Optional[int] = None):
        return kill_error(self.meta, exit_code)

    def get_sh_error(self, message: str, exit_code: int = 1) -> ShError:
        return ShError(message, exit_code)

    def kill(self, group: bool = False) -> None:
        self.registry.kill(self.meta.session_key, [self.meta.pid], group=group)

    def is_running(self) -> bool:
        process = self.process
        return process is not None and process.status == ProcessStatus.RUNNING

    # Helpers

    def is_tty_at(self, fd: int = 0) -> bool:
        return is_tty_at(self.meta, fd)

    @staticmethod
    def get_uid() -> str:
        """Short random identifier, e.g. ``60f5bfdb9b9``."""
        return uuid.uuid4().hex[:11]

    get_opts = staticmethod(get_opts)
    parse_js_arg = staticmethod(parse_js_arg)
    add_stdin_to_args = staticmethod(add_stdin_to_args)
    json = staticmethod(stringify)
    pretty = staticmethod(pretty)
    is_data_chunk = staticmethod(is_data_chunk)

    @staticmethod
    def data_chunk(items: Iterable[Any]) -> DataChunk:
        return DataChunk(list(items))
