"""Built-in commands of the shell.

Each builtin receives an :class:`Invocation` describing the calling node,
its meta and its expanded arguments. Builtins are async generators
yielding output values, or coroutines that only set the node's exit code.
"""

from __future__ import annotations

import asyncio
import inspect
import keyword
import logging
import re
import textwrap
from collections.abc import Mapping, Sequence
from contextlib import aclosing
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from jobshell.lib.values import (
    keys_deep,
    parse_js_arg,
    safe_json_parse,
    stringify,
    to_text,
    truncate_one_line,
)
from jobshell.shell.devices import EOF
from jobshell.shell.errors import (
    IncompleteParse,
    ParseError,
    PathNotFoundError,
    ProcessError,
    ShError,
    handle_process_error,
    kill_error,
)
from jobshell.shell.expansion import interpret_escape_sequences
from jobshell.shell.nodes import Meta
from jobshell.shell.parser import parse
from jobshell.shell.process_api import ProcessApi, get_opts, is_tty_at, read, sleep
from jobshell.shell.scope import compute_normalized_parts, delete_path, normalize_abs_parts, resolve_normalized, set_path
from jobshell.shell.session import Process, ProcessStatus, Registry, Session
from jobshell.shell.text import Ansi, TtyLinkCtxt, format_columns, format_link, parse_tty_markdown_links, strip_ansi

if TYPE_CHECKING:
    from jobshell.shell.interpreter import Semantics

logger = logging.getLogger(__name__)

# A `run` argument of this form is a path to a callable, e.g. /lib/util/seq
_RUN_PATH_RE = re.compile(r"[\w.\-]*/[\w/.\-]*")
_PRINTF_RE = re.compile(r"%([%sd])")


@dataclass
class Invocation:
    """A builtin being run.

    Attributes:
        node: The calling CallExpr or DeclClause, whose exit code the
            builtin may set
        meta: Meta of the command; builtins may rebind its descriptors
        name: The builtin's name
        args: Expanded arguments, excluding the name
        semantics: The interpreter
    """
    node: Any
    meta: Meta
    name: str
    args: List[Any]
    semantics: "Semantics"

    @property
    def registry(self) -> Registry:
        return self.semantics.registry

    @property
    def session(self) -> Session:
        return self.registry.get_session(self.meta.session_key)

    @property
    def process(self) -> Optional[Process]:
        return self.registry.get_process(self.meta)

    @property
    def api(self) -> ProcessApi:
        return ProcessApi(self.registry, self.meta)

    async def read(self) -> Any:
        return await read(self.registry, self.meta)

    def pwd(self) -> str:
        return self.registry.get_var(self.meta, "PWD") or "/"


class BuiltinCommand:
    """A registered builtin."""

    def __init__(self, name: str, description: str, func: Callable):
        """Initialize builtin command.

        Args:
            name: Command name
            description: Help text
            func: Async generator or coroutine function taking an Invocation
        """
        self.name = name
        self.description = description
        self.func = func

    def execute(self, invocation: Invocation) -> Any:
        return self.func(invocation)


class BuiltinRegistry:
    """Registry of built-in shell commands."""

    def __init__(self):
        self.commands: Dict[str, BuiltinCommand] = {}

    def register(self, name: str, description: str) -> Callable:
        """Decorator to register a built-in command.

        Args:
            name: Command name
            description: Help text

        Returns:
            Decorator function
        """
        def decorator(func: Callable) -> Callable:
            cmd = BuiltinCommand(name, description, func)
            self.commands[cmd.name] = cmd
            logger.debug(f"Registered builtin: {cmd.name}")
            return func
        return decorator

    def get(self, name: str) -> Optional[BuiltinCommand]:
        return self.commands.get(name)

    def list_commands(self) -> List[BuiltinCommand]:
        return list(self.commands.values())


_registry = BuiltinRegistry()


def get_registry() -> BuiltinRegistry:
    """Get the global builtin registry.

    Returns:
        Registry instance
    """
    return _registry


def is_builtin(name: str) -> bool:
    return name in _registry.commands


async def run_builtin(invocation: Invocation):
    """Run a builtin, yielding its outputs.

    Raises:
        ShError: If there is no such builtin
    """
    cmd = _registry.get(invocation.name)
    if cmd is None:
        raise ShError(f"{invocation.name}: not a builtin", 127)
    result = cmd.execute(invocation)
    if inspect.isasyncgen(result):
        async with aclosing(result):
            async for item in result:
                yield item
    else:
        value = await result
        if value is not None:
            yield value


# Variables and paths

@_registry.register("assign", "Merge objects into each input object")
async def assign_command(inv: Invocation):
    values = []
    for arg in inv.args:
        parsed = parse_js_arg(arg)
        # Words which are not JSON name variables
        values.append(inv.registry.get_var_deep(inv.meta, arg) if isinstance(parsed, str) else parsed)

    if is_tty_at(inv.meta, 0):
        if values:
            yield _merge(values[0], values[1:])
        return
    while (datum := await inv.read()) is not EOF:
        yield _merge(datum, values)


def _merge(target: Any, sources: List[Any]) -> Any:
    if not isinstance(target, dict) or not all(isinstance(x, Mapping) for x in sources):
        raise ShError("assign: expected objects", 1)
    for source in sources:
        target.update(source)
    return target


@_registry.register("cd", "Change current directory")
async def cd_command(inv: Invocation) -> None:
    args = inv.args
    if len(args) > 1:
        raise ShError("usage: `cd /`, `cd`, `cd foo/bar`, `cd /foo/bar`, `cd ..` and `cd -`", 1)
    registry, meta = inv.registry, inv.meta
    prev_pwd = registry.get_var(meta, "OLDPWD") or "/home"
    curr_pwd = inv.pwd()
    target = to_text(args[0]) if args else ""

    if not target:
        new_pwd = "/home"
    elif target == "-":
        new_pwd = prev_pwd
    else:
        if target.startswith("/"):
            parts = normalize_abs_parts(target.split("/"))
        else:
            parts = normalize_abs_parts(curr_pwd.split("/") + target.split("/"))
        try:
            resolve_normalized(parts, inv.semantics.process_context(meta).root)
        except PathNotFoundError:
            raise ShError(f"{target} not found", 1) from None
        new_pwd = "/" + "/".join(parts)

    registry.set_var(meta, "OLDPWD", curr_pwd)
    registry.set_var(meta, "PWD", new_pwd)


@_registry.register("pwd", "Print current directory")
async def pwd_command(inv: Invocation) -> str:
    return inv.pwd()


@_registry.register("declare", "List variables and functions")
async def declare_command(inv: Invocation):
    """``declare [-f|-F|-x|-p] [prefix...]``."""
    opts, operands = get_opts(inv.args, boolean=["f", "F", "x", "p"])
    no_opts = not any(opts[x] for x in ("f", "F", "x", "p"))
    show_vars = opts["x"] or opts["p"] or no_opts
    show_funcs = opts["f"] or no_opts
    show_func_names = opts["F"]
    # Only match prefixes when some option is specified
    prefixes = [to_text(x) for x in operands] if operands and not no_opts else None

    def matches(key: str) -> bool:
        return prefixes is None or any(key.startswith(x) for x in prefixes)

    session, process = inv.session, inv.process
    variables = {**session.var, **(process.inherit_var if process else {})}
    funcs = list(session.func.values())
    max_length = inv.registry.config.max_stringify_length

    if show_vars:
        for key, value in variables.items():
            if not matches(key):
                continue
            colour = Ansi.WHITE if isinstance(value, str) else Ansi.BRIGHT_YELLOW
            yield f"{Ansi.BLUE}{key}{Ansi.RESET}={colour}{stringify(value)[-max_length:]}{Ansi.RESET}"

    if show_funcs:
        # `declare -f foo` shows only foo when it exists
        exact = prefixes[0] if prefixes and len(prefixes) == 1 and prefixes[0] in session.func else None
        for func in funcs:
            if not matches(func.key) or (exact and func.key != exact):
                continue
            text = f"{Ansi.BLUE}{func.key}{Ansi.WHITE} (){Ansi.BOLD_RESET} {func.src}{Ansi.RESET}"
            for line in text.splitlines():
                yield line
            yield ""

    if show_func_names:
        for func in funcs:
            if matches(func.key):
                yield f"{Ansi.WHITE}declare -f {func.key}{Ansi.RESET}"


@_registry.register("local", "Declare local variables")
async def local_command(inv: Invocation) -> None:
    process = inv.process
    if process is None or process.pid == 0:
        raise ShError("session leader doesn't support local variables", 1)
    if any("=" in to_text(x) for x in inv.args):
        raise ShError("usage: `local x y z` (assign values elsewhere)", 1)
    for name in inv.args:
        if name:
            process.local_var[name] = None


@_registry.register("get", "Output the value at each path")
async def get_command(inv: Invocation):
    for value in await inv.semantics.get(inv.node, inv.meta, [to_text(x) for x in inv.args]):
        if value is not None:
            yield value


@_registry.register("set", "Set the value at a path, e.g. set foo.bar 42")
async def set_command(inv: Invocation) -> None:
    if len(inv.args) < 2:
        raise ShError("usage: `set {path} {value}` e.g. `set foo.bar 42`", 1)
    path, value = to_text(inv.args[0]), parse_js_arg(inv.args[1])
    segments = [x for x in re.split(r"[./]", path) if x]
    process = inv.process

    if not path.startswith("/") and segments and process is not None and (
        segments[0] in process.local_var or segments[0] in process.inherit_var
    ):
        inv.registry.set_var_deep(inv.meta, "/".join(segments), value)
        return

    parts = segments if path.startswith("/") else normalize_abs_parts(inv.pwd().split("/") + segments)
    if len(parts) < 2:
        raise ShError(f"{path}: cannot set", 1)
    set_path(parts, inv.semantics.process_context(inv.meta).root, value)


@_registry.register("unset", "Unset variables and shell functions")
async def unset_command(inv: Invocation) -> None:
    session, process = inv.session, inv.process
    for arg in inv.args:
        if process is not None and arg in process.local_var:
            # Ancestral variables cannot be unset
            del process.local_var[arg]
        else:
            session.var.pop(arg, None)
            session.func.pop(arg, None)


@_registry.register("rm", "Remove variables below /home")
async def rm_command(inv: Invocation) -> None:
    opts, operands = get_opts(inv.args, boolean=["f"])
    force = opts["f"]
    root = {"home": inv.session.var}
    for path in operands:
        path = to_text(path)
        parts = compute_normalized_parts(path, inv.pwd())
        if parts[:1] == ["home"] and len(parts) > 1:
            if not delete_path(parts, root) and not force:
                raise ShError(f"{path}: not found", 1)
        elif not force:
            raise ShError(f"{path}: only /home/* writable", 1)


@_registry.register("ls", "List variables")
async def ls_command(inv: Invocation):
    """``ls [-1] [-l] [-r] [-a] [path...]``."""
    opts, operands = get_opts(inv.args, boolean=["1", "l", "r", "a"])
    pwd = inv.pwd()
    queries = [to_text(x) for x in operands] or [""]
    root = inv.semantics.process_context(inv.meta).root
    width = inv.registry.config.columns

    for query in queries:
        try:
            obj = resolve_normalized(compute_normalized_parts(query, pwd), root)
        except PathNotFoundError:
            inv.registry.write_msg(inv.meta.session_key, f'ls: "{query}" is not defined', "error")
            continue

        if len(queries) > 1:
            yield f"{Ansi.BLUE}{query}:"
        keys = sorted(keys_deep(obj) if opts["r"] else _keys(obj))
        if pwd == "/home" and not opts["a"]:
            # Capitalised variables are hidden at the top level
            keys = [x for x in keys if x.upper() != x or x[:1].isdigit()]

        if opts["l"]:
            types = [type(resolve_normalized(x.split("/"), obj)).__name__ for x in keys]
            types_width = max((len(x) for x in types), default=0)
            items = [
                f"{Ansi.BRIGHT_YELLOW}{kind.ljust(types_width)}{Ansi.WHITE} {key}{Ansi.RESET}"
                for kind, key in zip(types, keys)
            ]
        elif opts["1"]:
            items = keys
        else:
            items = format_columns(keys, width)
        for item in items:
            yield item


def _keys(obj: Any) -> List[str]:
    if isinstance(obj, Mapping):
        return [str(x) for x in obj]
    if isinstance(obj, Sequence) and not isinstance(obj, (str, bytes)):
        return [str(i) for i in range(len(obj))]
    if isinstance(obj, (str, bytes, int, float, bool)) or obj is None:
        return []
    return sorted(getattr(type(obj), "path_members", ()))


# Output

@_registry.register("echo", "Output arguments")
async def echo_command(inv: Invocation):
    """``echo [-a] [-n] ...``: ``-a`` outputs an array, ``-n`` numbers."""
    opts, operands = get_opts(inv.args, boolean=["a", "n"])
    if opts["a"]:
        yield [_to_number(x) for x in operands] if opts["n"] else operands
    elif opts["n"]:
        for operand in operands:
            yield _to_number(operand)
    else:
        yield " ".join(to_text(x) for x in inv.args)


def _to_number(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    try:
        return int(value)
    except (TypeError, ValueError):
        pass
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ShError(f"{value}: not a number", 1) from None


@_registry.register("printf", "Output a formatted string")
async def printf_command(inv: Invocation) -> Optional[str]:
    """``printf format [args...]`` supporting ``%s``, ``%d``, ``%%`` and escapes."""
    if not inv.args:
        raise ShError("usage: `printf format [args...]`", 1)
    fmt = interpret_escape_sequences(to_text(inv.args[0]))
    operands = iter(inv.args[1:])

    def replace(match: re.Match) -> str:
        if match.group(1) == "%":
            return "%"
        operand = next(operands, None)
        if match.group(1) == "s":
            return "" if operand is None else to_text(operand)
        try:
            return str(int(float(0 if operand is None else operand)))
        except (TypeError, ValueError):
            raise ShError(f"{operand}: invalid number", 1) from None

    return _PRINTF_RE.sub(replace, fmt)


@_registry.register("choice", "Output lines with clickable links, outputting the clicked value")
async def choice_command(inv: Invocation):
    """``choice '[ yes ](y) [ no ](n)'``."""
    if not is_tty_at(inv.meta, 1):
        raise ShError("stdout must be a tty", 1)
    if is_tty_at(inv.meta, 0):
        async for item in _choice(inv, " ".join(to_text(x) for x in inv.args)):
            yield item
        return
    while (datum := await inv.read()) is not EOF:
        text = datum["text"] if isinstance(datum, Mapping) and "text" in datum else to_text(datum)
        async for item in _choice(inv, text):
            yield item


async def _choice(inv: Invocation, text: str):
    registry, meta = inv.registry, inv.meta
    parsed_lines = [parse_tty_markdown_links(line) for line in text.replace("\r", "").split("\n")]
    for parsed in parsed_lines:
        yield parsed.tty_text

    if all(x.link_ctxts_factory is None for x in parsed_lines):
        return

    chosen = asyncio.get_running_loop().create_future()

    def resolve(value: Any) -> None:
        if not chosen.done():
            chosen.set_result(value)

    def on_kill(sigint: bool = False) -> None:
        if not chosen.done():
            chosen.set_exception(kill_error(meta))

    process = inv.process
    process.cleanups.append(on_kill)
    try:
        for parsed in parsed_lines:
            if parsed.link_ctxts_factory is not None:
                registry.add_tty_line_ctxts(meta.session_key, parsed.tty_text_key, parsed.link_ctxts_factory(resolve))
        value = await chosen
    finally:
        if on_kill in process.cleanups:
            process.cleanups.remove(on_kill)
        for parsed in parsed_lines:
            registry.remove_tty_line_ctxts(meta.session_key, parsed.tty_text_key)
    yield value


@_registry.register("say", "Speak arguments or input lines")
async def say_command(inv: Invocation):
    """``say [-v voice] [text...]``; ``say -v ?`` lists voices."""
    opts, operands = get_opts(inv.args, string=["v"])
    voice_device = inv.registry.voice
    voice = opts["v"]
    if voice == "?":
        for name in voice_device.voices():
            yield name
        return
    if voice is not None and voice not in voice_device.voices():
        raise ShError(f"unknown voice: {voice}", 1)

    inv.meta.fd[1] = voice_device.key
    process = inv.process

    def on_kill(sigint: bool = False) -> None:
        voice_device.cancel()

    def on_suspend(global_: bool = False) -> None:
        voice_device.pause()

    def on_resume() -> None:
        voice_device.resume()

    process.cleanups.append(on_kill)
    process.on_suspends.append(on_suspend)
    process.on_resumes.append(on_resume)
    try:
        if operands:
            yield {"voice": voice, "text": " ".join(to_text(x) for x in operands)}
        else:
            while (datum := await inv.read()) is not EOF:
                yield {"voice": voice, "text": to_text(datum)}
    finally:
        for callbacks, callback in (
            (process.cleanups, on_kill),
            (process.on_suspends, on_suspend),
            (process.on_resumes, on_resume),
        ):
            if callback in callbacks:
                callbacks.remove(callback)


# Processes

@_registry.register("true", "Exit with code 0")
async def true_command(inv: Invocation) -> None:
    inv.node.exit_code = 0


@_registry.register("false", "Exit with code 1")
async def false_command(inv: Invocation) -> None:
    inv.node.exit_code = 1


@_registry.register("test", "Exit with code 0 if the arguments parse as a truthy value")
async def test_command(inv: Invocation) -> None:
    inv.node.exit_code = 0 if parse_js_arg(" ".join(to_text(x) for x in inv.args)) else 1


@_registry.register("return", "Exit from a shell function")
async def return_command(inv: Invocation) -> None:
    registry, meta = inv.registry, inv.meta
    if not inv.args:
        exit_code = registry.get_last_exit_code(meta)
    else:
        try:
            exit_code = int(to_text(inv.args[0]))
        except ValueError:
            registry.write_msg(meta.session_key, "return: numeric argument required", "error")
            exit_code = 2
    # Unwind the function's process, not its caller
    raise kill_error(meta, exit_code, depth=1)


@_registry.register("sleep", "Wait for a number of seconds")
async def sleep_command(inv: Invocation) -> None:
    seconds = 1.0
    if inv.args:
        parsed = safe_json_parse(inv.args[0])
        seconds = float(parsed) if isinstance(parsed, (int, float)) else 0.0
    await sleep(inv.registry, inv.meta, seconds)


@_registry.register("shift", "Left-shift positional parameters")
async def shift_command(inv: Invocation) -> None:
    try:
        shift_by = int(to_text(inv.args[0])) if inv.args else 1
    except ValueError:
        shift_by = -1
    if shift_by < 0:
        raise ShError("usage: `shift [n]` for non-negative integer n", 1)
    del inv.process.positionals[1:1 + shift_by]


@_registry.register("kill", "Kill, suspend or resume processes")
async def kill_command(inv: Invocation) -> None:
    """``kill [--all] [--STOP|--CONT] [pid...]``."""
    opts, operands = get_opts(inv.args, boolean=["all", "ALL", "STOP", "CONT"])
    registry, session_key = inv.registry, inv.meta.session_key
    if opts["all"] or opts["ALL"]:
        processes = list(reversed(registry.get_processes(session_key)))
        registry.kill_processes(processes, stop=opts["STOP"], cont=opts["CONT"])
        return
    pids = [x for x in map(safe_json_parse, operands) if isinstance(x, int) and not isinstance(x, bool)]
    registry.kill(session_key, pids, stop=opts["STOP"], cont=opts["CONT"])


@_registry.register("ps", "List processes")
async def ps_command(inv: Invocation):
    """``ps [-a] [-s]``: all processes rather than leaders, and their source."""
    opts, _ = get_opts(inv.args, boolean=["a", "s"])
    registry, session_key = inv.registry, inv.meta.session_key
    all_processes = registry.get_processes(session_key)
    processes = all_processes if opts["a"] else [p for p in all_processes if p.is_leader]
    shown = {p.pid for p in processes}

    status_colour = {
        ProcessStatus.SUSPENDED: Ansi.DARK_GREY,
        ProcessStatus.RUNNING: Ansi.WHITE,
        ProcessStatus.KILLED: Ansi.RED,
    }
    status_links = {
        ProcessStatus.SUSPENDED: f"{format_link(f'{Ansi.DARK_GREY} no ')} {format_link(f'{Ansi.RED} x ')}",
        ProcessStatus.RUNNING: f"{format_link(f'{Ansi.WHITE} on ')} {format_link(f'{Ansi.RED} x ')}",
        ProcessStatus.KILLED: "",
    }

    def has_shown_descendant(leader: Process) -> bool:
        lookup = {leader.pid}
        for other in all_processes:
            if other.ppid in lookup and other.pid != leader.pid:
                lookup.add(other.pid)
        return any(pid in shown for pid in lookup - {leader.pid})

    def suppress_links(process: Process) -> bool:
        return (
            process.status == ProcessStatus.KILLED
            or process.pid == 0
            or (not opts["a"] and not opts["s"] and has_shown_descendant(process))
        )

    def process_line(process: Process) -> str:
        info = " ".join(str(x).ljust(5) for x in (process.pid, process.ppid, process.pgid))
        links = "" if suppress_links(process) else f"{status_links[process.status]} "
        tags = ""
        if process.ptags:
            tags = f"{Ansi.BRIGHT_YELLOW}{stringify(process.ptags) if opts['s'] else '* '}{Ansi.RESET}"
        src = "" if opts["s"] else truncate_one_line(process.src.lstrip(), 30)
        line = f"{status_colour[process.status]}{info}{Ansi.RESET}{links}{tags}{src}"
        if links:
            register_links(process, line)
        return line

    def register_links(process: Process, line: str) -> None:
        line_text = strip_ansi(line)

        def act(**signal) -> Callable[[int], None]:
            def callback(line_number: int) -> None:
                registry.remove_tty_line_ctxts(session_key, line_text)
                registry.kill(session_key, [process.pid], **signal)
            return callback

        ctxts = []
        for link_text, signal in (("on", {"stop": True}), ("no", {"cont": True}), ("x", {})):
            index = line_text.find(f"[ {link_text} ]")
            if index >= 0:
                ctxts.append(_link_ctxt(line_text, link_text, index + 1, act(**signal)))
        registry.add_tty_line_ctxts(session_key, line_text, ctxts)

    title = " ".join(x.ljust(5) for x in ("pid", "ppid", "pgid"))
    yield f"{Ansi.BLUE}{title}{Ansi.RESET}"
    for process in processes:
        yield process_line(process)
        if opts["s"]:
            for line in process.src.split("\n"):
                yield f"{Ansi.RESET}{line}"


def _link_ctxt(line_text: str, link_text: str, start: int, callback: Callable[[int], None]):
    return TtyLinkCtxt(line_text=line_text, link_text=link_text, link_start_index=start, callback=callback)


@_registry.register("source", "Run shell code stored in a variable")
async def source_command(inv: Invocation) -> None:
    if not inv.args:
        return
    registry, meta = inv.registry, inv.meta
    path = to_text(inv.args[0])
    try:
        script = (await inv.semantics.get(inv.node, meta, [path]))[0]
    except PathNotFoundError:
        registry.write_msg(meta.session_key, f'source: "{path}" not found', "error")
        return
    if not isinstance(script, str):
        registry.write_msg(meta.session_key, f'source: "{path}" does not resolve as a string', "error")
        return

    try:
        file = parse(script)
    except IncompleteParse as e:
        raise ShError(f"{path}: incomplete script: {e}", 1) from e
    except ParseError as e:
        raise ShError(f"{path}: {e}", 1) from e

    # A new process, but PWD is not localized
    file.meta = meta.fork(ppid=meta.pid)
    try:
        await inv.session.tty_shell.spawn(file, leading=meta.pid == 0, positionals=list(inv.args[1:]))
    finally:
        inv.node.exit_code = file.exit_code


@_registry.register("run", "Run a Python generator body or a library function")
async def run_command(inv: Invocation):
    """``run '{body}' [args...]`` or ``run /lib/util/seq [args...]``.

    A body is the source of an async generator with parameters ``ct``,
    ``api`` and ``args``, also seeing ``home``, ``etc`` and ``lib``. It may
    ``yield`` outputs, or ``return`` a single one.
    """
    if not inv.args:
        raise ShError("usage: `run {body-or-path} [args...]`", 1)
    node, meta = inv.node, inv.meta
    source, rest = to_text(inv.args[0]), list(inv.args[1:])
    ctx = inv.semantics.process_context(meta, rest)

    try:
        func = _runnable(source, ctx, inv.pwd(), meta)
        result = func(ctx, ctx.api, ctx.args)
        if inspect.isasyncgen(result):
            async with aclosing(result):
                async for item in result:
                    yield item
        elif inspect.isgenerator(result):
            for item in result:
                yield item
        else:
            if inspect.isawaitable(result):
                result = await result
            if result is not None:
                yield result
    except ProcessError as e:
        handle_process_error(node, e)
    except ShError as e:
        node.exit_code = e.exit_code
        # An empty message only sets the exit code
        if e.message:
            raise
    except Exception as e:
        logger.exception(f"run: {meta.session_key}: {e}")
        node.exit_code = 1
        raise ShError(str(e) or type(e).__name__, 1, e) from e


def _runnable(source: str, ctx: Any, pwd: str, meta: Meta) -> Callable:
    if _RUN_PATH_RE.fullmatch(source):
        func = ctx.resolve(source, pwd)
        if not callable(func):
            raise ShError(f"{source}: not a function", 1)
        return func

    name = meta.stack[-1] if meta.stack else "generator"
    if not name.isidentifier() or keyword.iskeyword(name):
        name = "generator"
    body = textwrap.indent(textwrap.dedent(source).strip("\n") or "pass", "    ")
    code = f"async def {name}(ct, api, args):\n    home, etc, lib = ct.home, ct.etc, ct.lib\n{body}\n"
    namespace: Dict[str, Any] = {"asyncio": asyncio, "EOF": EOF, "Ansi": Ansi}
    try:
        exec(compile(code, f"<run {name}>", "exec"), namespace)
    except SyntaxError as e:
        raise ShError(f"{e.msg} (line {(e.lineno or 2) - 1})", 1) from e
    return namespace[name]


# Shell

@_registry.register("history", "List previous commands")
async def history_command(inv: Invocation):
    for line in inv.session.tty_shell.get_history():
        yield line


@_registry.register("session", "Output the session key")
async def session_command(inv: Invocation) -> str:
    return inv.meta.session_key


@_registry.register("help", "List builtins")
async def help_command(inv: Invocation):
    yield "The following commands are supported:"
    names = sorted(cmd.name for cmd in _registry.list_commands())
    for line in format_columns(names, inv.registry.config.columns):
        yield f"{Ansi.BLUE}{line}{Ansi.RESET}"
    yield f"View shell functions via {Ansi.BLUE}declare -F{Ansi.RESET}."
