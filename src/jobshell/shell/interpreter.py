"""Evaluation of parsed shell source.

:class:`Semantics` walks the syntax tree of a process. Structural nodes
(statements, blocks, control flow, pipelines) are coroutines; simple
commands are async generators of output values, which the enclosing
command boundary writes to its stdout device one at a time.

Each command is an error boundary. A ``ShError`` becomes the command's
exit code plus a message on its stderr device. A ``ProcessError`` records
an exit code and keeps unwinding unless its depth is spent.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import uuid
from contextlib import aclosing
from typing import TYPE_CHECKING, Any, List, Optional, Sequence

from jobshell.lib.values import (
    add_values,
    parse_js_arg,
    safe_json_parse,
    stringify,
    tags_to_meta,
    text_to_tags,
    to_text,
)
from jobshell.shell.builtins import Invocation, is_builtin, run_builtin
from jobshell.shell.devices import VarDeviceMode
from jobshell.shell.errors import (
    PathNotFoundError,
    ProcessError,
    ShError,
    handle_process_error,
    kill_error,
)
from jobshell.shell.expansion import (
    Expanded,
    interpret_escape_sequences,
    literal,
    normalize_whitespace,
)
from jobshell.shell.nodes import (
    Assign,
    BinaryCmd,
    Block,
    CallExpr,
    CmdSubst,
    DblQuoted,
    DeclClause,
    File,
    FuncDecl,
    IfClause,
    Lit,
    Meta,
    NamedFunction,
    Node,
    ParamExp,
    Redirect,
    SglQuoted,
    Stmt,
    Subshell,
    TimeClause,
    WhileClause,
    Word,
    wrap_in_file,
)
from jobshell.shell.process_api import ProcessApi, is_tty_at, killable, pre_process_write, sleep
from jobshell.shell.scope import ProcessContext, match_func_format, resolve_normalized, resolve_path
from jobshell.shell.session import ProcessStatus, Registry
from jobshell.shell.text import Ansi

if TYPE_CHECKING:
    from jobshell.shell.tty import TtyShell

logger = logging.getLogger(__name__)

RUN_HINT = "format `run {body}` e.g. run 'yield \"foo\"; yield await api.read()'"

_REDIRECT_MODES = {
    ">": VarDeviceMode.LAST,
    ">>": VarDeviceMode.ARRAY,
    "&>>": VarDeviceMode.FRESH_ARRAY,
}


def _is_spread(parts: Sequence[Node], index: int) -> bool:
    """Whether ``parts[index]`` is the ``...`` of a spread ``...$( cmd )``."""
    part = parts[index]
    return (
        isinstance(part, Lit)
        and part.value == "..."
        and index + 1 < len(parts)
        and isinstance(parts[index + 1], CmdSubst)
    )


def _binary_stmts(node: BinaryCmd) -> List[Stmt]:
    """Leaves of a left-nested chain of the same operator, in order."""
    ys = []
    current = node
    while True:
        ys.append(current.y)
        left = current.x
        if (
            isinstance(left.cmd, BinaryCmd)
            and left.cmd.op == node.op
            and not left.negated
            and not left.redirs
        ):
            current = left.cmd
        else:
            break
    return [left, *reversed(ys)]


def _command_name(cmd: Node) -> Optional[str]:
    if isinstance(cmd, CallExpr):
        return cmd.args[0].src if cmd.args else None
    return type(cmd).__name__


class Semantics:
    """Interpreter bound to a registry."""

    def __init__(self, registry: Registry):
        self.registry = registry

    @property
    def config(self):
        return self.registry.config

    def tty(self, meta: Meta) -> "TtyShell":
        return self.registry.get_session(meta.session_key).tty_shell

    def process_context(self, meta: Meta, args: Sequence[Any] = ()) -> ProcessContext:
        """Root of the tree that paths of this process resolve against."""
        session = self.registry.get_session(meta.session_key)
        return ProcessContext(
            home=session.var,
            etc=session.etc,
            lib=session.lib,
            api=ProcessApi(self.registry, meta),
            args=list(args),
            meta=meta,
        )

    # Statements

    async def file(self, node: File) -> None:
        await self.stmts(node, node.stmts, node.meta)

    async def stmts(self, parent: Node, stmts: List[Stmt], meta: Meta) -> None:
        parent.exit_code = 0
        for stmt in stmts:
            try:
                await self.stmt(stmt, meta)
            finally:
                parent.exit_code = stmt.exit_code
                self.registry.set_last_exit_code(meta, stmt.exit_code)

    async def stmt(self, stmt: Stmt, meta: Meta) -> None:
        if stmt.cmd is None:
            raise ShError("pure redirects are unsupported", 2)

        if stmt.background and meta.pgid == 0:
            tty = self.tty(meta)
            file = wrap_in_file(stmt, meta, ppid=meta.pid, background=True)
            process = tty.create_child(file, local_var=True, new_group=True)
            tty.start_background(file, process)
            stmt.exit_code = 1 if stmt.negated else 0
            return

        try:
            await self.command(stmt.cmd, stmt.redirs, meta)
        finally:
            stmt.exit_code = stmt.cmd.exit_code
            if stmt.negated:
                stmt.exit_code = 0 if stmt.cmd.exit_code else 1

    async def command(self, cmd: Node, redirs: List[Redirect], meta: Meta) -> None:
        """Run a simple or compound command with its own descriptor table."""
        meta = meta.fork()
        var_devices: List[str] = []
        try:
            await self.apply_redirects(cmd, redirs, meta, var_devices)
            if isinstance(cmd, (CallExpr, DeclClause)):
                await self._write_outputs(cmd, meta)
            elif isinstance(cmd, Block):
                await self.stmts(cmd, cmd.stmts, meta)
            elif isinstance(cmd, BinaryCmd):
                await self.binary_cmd(cmd, meta)
            elif isinstance(cmd, FuncDecl):
                self.func_decl(cmd, meta)
            elif isinstance(cmd, IfClause):
                await self.if_clause(cmd, meta)
            elif isinstance(cmd, TimeClause):
                await self.time_clause(cmd, meta)
            elif isinstance(cmd, Subshell):
                await self.subshell(cmd, meta)
            elif isinstance(cmd, WhileClause):
                await self.while_clause(cmd, meta)
            else:
                raise ShError("not implemented", 2)
        except Exception as e:
            name = _command_name(cmd)
            prefix = ": ".join([*meta.stack, name] if name else meta.stack)
            if name == "run" and not meta.stack and isinstance(e, ShError) and e.message:
                e.message = f"{e.message}\n{RUN_HINT}"
            await self.handle_sh_error(cmd, meta, e, prefix)
        finally:
            for key in var_devices:
                self.registry.remove_device(key)

    async def _write_outputs(self, cmd: Node, meta: Meta) -> None:
        process = self.registry.get_process(meta)
        stdout_key = meta.fd.get(1)
        device = self.registry.devices.get(stdout_key) if stdout_key else None
        if device is None:
            # The pipeline owning this descriptor has already failed
            raise kill_error(meta)

        generator = self.call_expr(cmd, meta) if isinstance(cmd, CallExpr) else self.decl_clause(cmd, meta)
        async with aclosing(generator):
            async for item in generator:
                await pre_process_write(process, meta)
                if meta.fd.get(1) != stdout_key:
                    # e.g. `say` redirects its stdout to /dev/voice
                    stdout_key = meta.fd.get(1)
                    device = self.registry.resolve(1, meta)
                await killable(process, meta, device.write_data(item))

    async def handle_sh_error(self, node: Node, meta: Meta, error: Exception, prefix: str = "") -> None:
        """Convert an error raised by a command into its exit code.

        Args:
            node: The command
            meta: Meta of the command
            error: The error
            prefix: Prepended to the message, e.g. ``"myfunc: echo"``

        Raises:
            ProcessError: Unless its depth is spent
        """
        if isinstance(error, ProcessError):
            handle_process_error(node, error)
            return

        if isinstance(error, ShError):
            message = ": ".join(x for x in (prefix, error.message) if x)
            logger.debug(f"ShError: {meta.session_key}: {message} ({error.exit_code})")
            node.exit_code = error.exit_code
        else:
            message = ": ".join(x for x in (prefix, str(error) or type(error).__name__) if x)
            logger.error(f"Internal error: {meta.session_key}: {message}", exc_info=error)
            node.exit_code = 2

        device = self.registry.devices.get(meta.fd.get(2, ""))
        if device is None:
            logger.debug(f"ShError: {meta.session_key}: stderr does not exist")
            return
        await device.write_data(f"{Ansi.RED}{message}{Ansi.RESET}")

    def handle_top_level_process_error(self, error: ProcessError, background: bool = False) -> None:
        """Absorb a cancellation that reached the top of a job."""
        session = self.registry.sessions.get(error.session_key)
        if session is None:
            logger.debug(f"session not found: {error.session_key}")
            return
        self.registry.kill(error.session_key, [error.pid], group=True, sigint=True)
        session.last_exit["bg" if background else "fg"] = 1 if error.exit_code is None else error.exit_code

    # Simple commands

    async def call_expr(self, node: CallExpr, meta: Meta):
        node.exit_code = 0
        args = await self.perform_shell_expansion(node.args, meta)
        if meta.verbose:
            logger.info(f"simple command {args}")

        if node.assigns:
            await self.support_ptags(node, meta)

        if not args:
            for assign in node.assigns:
                await self.assign(assign, meta)
            return

        command, cmd_args = args[0], args[1:]
        func = self.registry.get_func(meta.session_key, command) if isinstance(command, str) else None
        if isinstance(command, str) and is_builtin(command):
            invocation = Invocation(
                node=node,
                meta=meta,
                name=command,
                args=cmd_args,
                semantics=self,
            )
            async for item in run_builtin(invocation):
                yield item
        elif func is not None:
            await self.launch_func(node, meta, func, cmd_args)
        else:
            # Fall back to reading the arguments as paths
            try:
                for arg in args:
                    value = (await self.get(node, meta, [arg]))[0]
                    if value is not None:
                        yield value
            except PathNotFoundError:
                raise ShError("not found", 127) from None

    async def launch_func(self, node: CallExpr, meta: Meta, func: NamedFunction, args: List[Any]) -> None:
        """Run a shell function in its own process, sharing PWD with the caller."""
        cloned = wrap_in_file(func.file, meta)
        cloned.meta.stack.append(func.key)
        try:
            await self.tty(meta).spawn(cloned, positionals=list(args))
        finally:
            node.exit_code = cloned.exit_code

    async def support_ptags(self, node: CallExpr, meta: Meta) -> None:
        """Tag the process via e.g. ``ptags='always x=1' sleep 10 &``."""
        assign = next((x for x in node.assigns if x.name == "ptags"), None)
        if assign is not None and assign.value is not None:
            expanded = await self.expand(assign.value, meta)
            process = self.registry.get_process(meta)
            if process is not None:
                process.ptags = tags_to_meta(text_to_tags(expanded.value))

    async def assign(self, node: Assign, meta: Meta) -> None:
        if node.name is None:
            return
        if node.naked or node.value is None:
            self.registry.set_var(meta, node.name, "")
            return

        expanded = await self.expand(node.value, meta, assign=True)
        values = expanded.values
        first = values[0] if values else ""
        if isinstance(first, str):
            value = parse_js_arg(expanded.value)
        else:
            # Structured output of `x=$( cmd )`
            value = values[0] if len(values) == 1 else values

        if node.append:
            left = self.registry.get_var(meta, node.name)
            value = value if left is None else add_values(left, value)
        self.registry.set_var(meta, node.name, value)

    async def decl_clause(self, node: DeclClause, meta: Meta):
        if node.variant == "declare":
            names = []
            assigned = False
            for arg in node.args:
                if arg.name is not None and not arg.naked and arg.value is not None:
                    await self.assign(arg, meta)
                    assigned = True
                elif arg.name is not None:
                    names.append(arg.name)
                elif arg.value is not None and arg.value.parts and isinstance(arg.value.parts[0], Lit):
                    names.append(arg.value.parts[0].value)
            if assigned and not names:
                return
            invocation = Invocation(node=node, meta=meta, name="declare", args=names, semantics=self)
            async for item in run_builtin(invocation):
                yield item
            return

        process = self.registry.get_process(meta)
        if process is None or process.pid == 0:
            raise ShError("local: cannot be used in session leader", 1)
        for arg in node.args:
            if arg.name is not None:
                process.local_var[arg.name] = None
                await self.assign(arg, meta)

    # Compound commands

    async def binary_cmd(self, node: BinaryCmd, meta: Meta) -> None:
        stmts = _binary_stmts(node)
        if node.op == "&&":
            for stmt in stmts:
                await self.stmt(stmt, meta)
                node.exit_code = stmt.exit_code
                if node.exit_code:
                    break
        elif node.op == "||":
            for stmt in stmts:
                await self.stmt(stmt, meta)
                node.exit_code = stmt.exit_code
                if not node.exit_code:
                    break
        elif node.op == "|":
            await self.pipeline(node, stmts, meta)
        else:
            raise ShError(f"binary command {node.op} unsupported", 2)

    async def pipeline(self, node: BinaryCmd, stmts: List[Stmt], meta: Meta) -> None:
        """Run ``stmts`` concurrently, connected by FIFOs.

        Every stage is a child process in the process group led by the
        process running the pipeline. When the last stage finishes, or the
        first stage fails, the other stages are killed.

        Raises:
            ProcessError: If the pipeline failed or was interrupted
        """
        session_key, ppid = meta.session_key, meta.pid
        pgid = ppid
        tty = self.tty(meta)
        process = self.registry.get_process(meta)
        loop = asyncio.get_running_loop()
        grace = self.config.scheduler.pipeline_grace_ms / 1000

        def kill_pipe_children(sigint: bool = False) -> None:
            for other in reversed(self.registry.get_processes(session_key, pgid)):
                if other.pid != ppid and other.status != ProcessStatus.KILLED:
                    other.kill(sigint)

        process.cleanups.append(kill_pipe_children)
        fifos = [
            self.registry.create_fifo(f"/dev/fifo-{session_key}-{ppid}-{i}", self.config.devices.fifo_size)
            for i in range(len(stmts) - 1)
        ]
        kill_handles: List[asyncio.TimerHandle] = []
        errors: List[BaseException] = []
        last_exit: List[int] = []

        try:
            clones = [wrap_in_file(stmt, meta, ppid=ppid, pgid=pgid) for stmt in stmts]
            for i, fifo in enumerate(fifos):
                clones[i].meta.fd[1] = clones[i + 1].meta.fd[0] = fifo.key

            async def run_stage(i: int, file: File) -> None:
                cleanups = []
                if i == 0 and is_tty_at(file.meta, 0):
                    # e.g. `take 3 | true` stops reading the terminal
                    cleanups.append(lambda sigint=False: tty.finished_reading())
                try:
                    await tty.spawn(file, local_var=True, cleanups=cleanups)
                except Exception as e:
                    errors.append(e)
                    raise
                finally:
                    if i < len(fifos):
                        fifos[i].finished_writing()
                    if i > 0:
                        fifos[i - 1].finished_reading()
                    finished_cleanly = i == len(clones) - 1 and not errors
                    if finished_cleanly:
                        last_exit.append(0 if file.exit_code is None else file.exit_code)
                    if finished_cleanly or len(errors) == 1:
                        kill_handles.append(loop.call_later(grace, kill_pipe_children))

            await asyncio.gather(*(run_stage(i, file) for i, file in enumerate(clones)), return_exceptions=True)
            await asyncio.sleep(grace)
            for handle in kill_handles:
                # Must not reach processes of a later pipeline in this group
                handle.cancel()

            exit_code = last_exit[0] if last_exit else None
            if exit_code is None or exit_code == 130 or process.status == ProcessStatus.KILLED:
                error_code = getattr(errors[0], "exit_code", None) if errors else None
                node.exit_code = 1 if error_code is None else error_code
                raise kill_error(meta)
            node.exit_code = exit_code
        finally:
            for fifo in fifos:
                fifo.finished_writing()
                self.registry.remove_device(fifo.key)
            if kill_pipe_children in process.cleanups:
                process.cleanups.remove(kill_pipe_children)

    async def if_clause(self, node: IfClause, meta: Meta) -> None:
        for branch in node.branches:
            if branch.cond:
                await self.stmts(node, branch.cond, meta)
                if branch.cond[-1].exit_code != 0:
                    continue
            await self.stmts(node, branch.then, meta)
            node.exit_code = (branch.then[-1].exit_code if branch.then else 0) or 0
            return
        node.exit_code = 0

    async def while_clause(self, node: WhileClause, meta: Meta) -> None:
        """Loop, spending at least ``loop_min_iteration_ms`` per iteration."""
        process = self.registry.get_process(meta)
        loop = asyncio.get_running_loop()
        min_seconds = self.config.scheduler.loop_min_iteration_ms / 1000
        started: Optional[float] = None

        while True:
            if process is not None and process.status == ProcessStatus.KILLED:
                raise kill_error(meta)
            if started is not None:
                elapsed = loop.time() - started
                if elapsed < min_seconds:
                    await sleep(self.registry, meta, min_seconds - elapsed)
            started = loop.time()

            await self.stmts(node, node.cond, meta)
            if (not node.exit_code) if node.until else node.exit_code:
                node.exit_code = 0
                break
            await self.stmts(node, node.do, meta)

    def func_decl(self, node: FuncDecl, meta: Meta) -> None:
        file = wrap_in_file(node.body, meta)
        file.src = node.src
        self.registry.add_func(meta.session_key, node.name, file)
        node.exit_code = 0

    async def time_clause(self, node: TimeClause, meta: Meta) -> None:
        loop = asyncio.get_running_loop()
        before = loop.time()
        node.exit_code = 0
        if node.stmt is not None:
            await self.stmt(node.stmt, meta)
            node.exit_code = node.stmt.exit_code
        elapsed_ms = round((loop.time() - before) * 1000)
        await self.registry.resolve(1, meta).write_data(f"real\t{elapsed_ms}ms")

    async def subshell(self, node: Subshell, meta: Meta) -> None:
        cloned = wrap_in_file(node, meta)
        try:
            await self.tty(meta).spawn(cloned, local_var=True)
        finally:
            node.exit_code = cloned.exit_code

    # Redirection

    async def apply_redirects(self, parent: Node, redirs: List[Redirect], meta: Meta, var_devices: List[str]) -> None:
        try:
            for redirect in redirs:
                redirect.exit_code = 0
                await self.redirect(redirect, meta, var_devices)
        except Exception:
            parent.exit_code = next((x.exit_code for x in redirs if x.exit_code), 1)
            raise

    async def redirect(self, node: Redirect, meta: Meta, var_devices: List[str]) -> None:
        """Rebind a descriptor of ``meta``.

        Raises:
            ShError: For bad descriptors and unsupported operators
        """
        try:
            src_fd = 1 if node.n is None else safe_json_parse(node.n)
            if not _is_fd(src_fd):
                raise ShError(f"{node.op}: bad file descriptor: \"{node.n}\"", 127)

            if node.op == ">&":
                value = (await self.expand(node.word, meta)).value
                dst_fd = safe_json_parse(value)
                if not _is_fd(dst_fd) or dst_fd not in meta.fd:
                    raise ShError(f"{node.op}: bad file descriptor: \"{value}\"", 127)
                meta.fd[src_fd] = meta.fd[dst_fd]
                return

            if node.op in _REDIRECT_MODES:
                value = (await self.expand(node.word, meta)).value
                if value in ("/dev/null", "/dev/voice"):
                    meta.fd[src_fd] = value
                    return
                device = self.registry.create_var_device(meta, value, _REDIRECT_MODES[node.op])
                var_devices.append(device.key)
                meta.fd[src_fd] = device.key
                return

            raise ShError(f"{node.op}: unsupported redirect", 127)
        except ShError as e:
            node.exit_code = e.exit_code
            raise

    # Expansion

    async def perform_shell_expansion(self, words: List[Word], meta: Meta) -> List[Any]:
        """Expand command words into arguments."""
        expanded: List[Any] = []
        for word in words:
            result = await self.expand(word, meta)
            single = word.parts[0] if len(word.parts) == 1 else None
            if isinstance(single, SglQuoted):
                expanded.append(result.value)
            elif isinstance(single, (ParamExp, CmdSubst)):
                # e.g. ' foo \nbar ' -> ['foo', 'bar']
                expanded.extend(normalize_whitespace(result.value))
            else:
                expanded.extend(result.values)
        return expanded

    async def expand(self, word: Word, meta: Meta, assign: bool = False) -> Expanded:
        """Expand a word.

        Args:
            word: The word
            meta: Meta of the command
            assign: The word is the right-hand side of an assignment

        Returns:
            Expanded values
        """
        parts = word.parts
        if len(parts) == 1:
            return await self.expand_part(parts[0], meta, parts, assign=assign)

        expansions = []
        for index, part in enumerate(parts):
            if _is_spread(parts, index):
                expansions.append(Expanded.of(""))
            else:
                expansions.append(await self.expand_part(part, meta, parts))

        values: List[Any] = []
        # Did the last parameter or command expansion end with whitespace?
        last_trailing = False
        for part, result in zip(parts, expansions):
            if isinstance(part, (ParamExp, CmdSubst)):
                vs = normalize_whitespace(result.value, trim=False)
                if not vs:
                    continue
                if not values or last_trailing or vs[0].startswith(" "):
                    values.extend(x.strip() for x in vs)
                elif isinstance(values[-1], list):
                    values.append([f"{x}{vs[0].strip()}" for x in values.pop()])
                    values.extend(x.strip() for x in vs[1:])
                else:
                    values.append(values.pop() + vs[0].strip())
                    values.extend(x.strip() for x in vs[1:])
                last_trailing = vs[-1].endswith(" ")
                continue

            brace = isinstance(part, Lit) and len(result.values) > 1
            if not values or last_trailing:
                values.append(list(result.values) if brace else result.value)
            elif isinstance(values[-1], list):
                prev = values.pop()
                if brace:
                    values.append([f"{x}{y}" for x in prev for y in result.values])
                else:
                    values.append([f"{x}{result.value}" for x in prev])
            elif brace:
                prev = values.pop()
                values.append([f"{prev}{y}" for y in result.values])
            else:
                values.append(values.pop() + result.value)
            last_trailing = False

        flat = [x for value in values for x in (value if isinstance(value, list) else [value])]
        return Expanded.of(flat)

    async def expand_part(
        self,
        part: Node,
        meta: Meta,
        siblings: Sequence[Node] = (),
        assign: bool = False,
        in_dquote: bool = False,
    ) -> Expanded:
        if isinstance(part, Lit):
            return Expanded.of(literal(part.value, in_dquote))

        if isinstance(part, SglQuoted):
            return Expanded.of(interpret_escape_sequences(part.value) if part.dollar else part.value)

        if isinstance(part, DblQuoted):
            output: List[str] = []
            for index, sub in enumerate(part.parts):
                if _is_spread(part.parts, index):
                    continue
                result = await self.expand_part(sub, meta, part.parts, in_dquote=True)
                head = output.pop() if output else ""
                if isinstance(sub, ParamExp) and sub.param == "@" and sub.exp_op is None:
                    if len(part.parts) == 1:
                        # "$@" is empty when there are no positionals
                        output.extend(result.values)
                    else:
                        first = to_text(result.values[0]) if result.values else ""
                        output.extend([f"{head}{first}", *result.values[1:]])
                else:
                    output.append(f"{head}{result.value}")
            return Expanded.of(output if part.parts else [""])

        if isinstance(part, CmdSubst):
            index = next((i for i, x in enumerate(siblings) if x is part), -1)
            spread = index > 0 and _is_spread(siblings, index - 1)
            return await self.command_substitution(part, meta, assign and len(siblings) == 1, spread)

        if isinstance(part, ParamExp):
            return await self.param_exp(part, meta)

        raise ShError(f"{type(part).__name__} unimplemented", 2)

    async def command_substitution(self, node: CmdSubst, meta: Meta, assign: bool, spread: bool) -> Expanded:
        """Run ``$( ... )`` in a child process and collect its output.

        Args:
            node: The substitution
            meta: Meta of the expanding command
            assign: Sole part of an assignment's value; values are forwarded
                as they are
            spread: Preceded by ``...``; values are joined by newlines
        """
        fifo = self.registry.create_fifo(f"/dev/fifo-cmd-{uuid.uuid4().hex[:11]}")
        cloned = wrap_in_file(node, meta)
        cloned.meta.fd[1] = fifo.key
        try:
            await self.tty(meta).spawn(cloned, local_var=True)
            values = fifo.read_all()
        finally:
            fifo.finished_writing()
            self.registry.remove_device(fifo.key)

        if assign:
            values = [x.rstrip("\n") if isinstance(x, str) else x for x in values]
            return Expanded.of(values or [""])
        if spread:
            return Expanded.of("\n".join(to_text(x) for x in values).rstrip("\n"))
        if len(values) > 1:
            return Expanded.of(stringify(values))
        if not values:
            return Expanded.of("")
        if isinstance(values[0], str):
            return Expanded.of(values[0].rstrip("\n"))
        return Expanded.of(stringify(values[0]))

    async def param_exp(self, node: ParamExp, meta: Meta) -> Expanded:
        """Expand ``$x``, ``${x:-y}``, ``${_/path}``, ``$@``, ``$?`` and friends."""
        if node.path is not None:
            value = (await self.get(node, meta, [node.path]))[0]
            if value is None:
                return Expanded.of("")
            return Expanded.of(value if isinstance(value, str) else stringify(value))

        if node.excl or node.length or (node.exp_op is not None and node.exp_op != ":-"):
            raise ShError(f"${{{node.param}}}: unsupported operation", 2)

        if node.exp_op == ":-":
            value = self.expand_parameter(meta, node.param)
            if value == "" and node.exp_word is not None:
                return await self.expand(node.exp_word, meta)
            return Expanded.of(value)

        process = self.registry.get_process(meta)
        positionals = process.positionals[1:] if process is not None else []
        param = node.param
        if param == "@":
            return Expanded.of([to_text(x) for x in positionals])
        if param == "*":
            return Expanded.of(" ".join(to_text(x) for x in positionals))
        if param == "$":
            return Expanded.of(str(meta.pid))
        if param == "?":
            return Expanded.of(str(self.registry.get_last_exit_code(meta)))
        if param == "#":
            return Expanded.of(str(len(positionals)))
        return Expanded.of(self.expand_parameter(meta, param))

    def expand_parameter(self, meta: Meta, name: str) -> str:
        if name.isdigit():
            value = self.registry.get_positional(meta.pid, meta.session_key, int(name))
        else:
            value = self.registry.get_var(meta, name)
        if value is None:
            return ""
        return value if isinstance(value, str) else stringify(value)

    # Paths

    async def get(self, node: Node, meta: Meta, args: Sequence[str]) -> List[Any]:
        """Resolve each argument as a path; awaitable results are awaited.

        Relative paths whose first segment names a local or inherited
        variable are read from the process itself.

        Raises:
            PathNotFoundError: If a path does not exist
        """
        ctx = self.process_context(meta)
        pwd = self.registry.get_var(meta, "PWD") or "/"
        process = self.registry.get_process(meta)
        outputs = []
        for arg in args:
            parts = arg.split("/")
            local = None
            if process is not None and parts[0]:
                if parts[0] in process.local_var:
                    local = process.local_var
                elif parts[0] in process.inherit_var:
                    local = process.inherit_var
            if local is not None:
                value = resolve_normalized([x for x in parts if x], local)
            else:
                value = resolve_path(arg, ctx.root, pwd)
            if inspect.isawaitable(value):
                value = await value
            outputs.append(value)
        node.exit_code = 1 if outputs and all(x is None for x in outputs) else 0
        return outputs


def _is_fd(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0
