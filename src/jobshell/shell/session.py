"""Session and process registry.

A :class:`Registry` owns every session and device of a runtime. Each
session has a process table, a function table, a variable tree and a
terminal. Processes are cooperative: killing one marks it and runs its
cleanups, which in turn cancel whatever the process is awaiting.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Callable, Dict, List, Optional

from jobshell.lib.config_parser import ShellConfig
from jobshell.lib.storage import Rehydrated, SessionStorage
from jobshell.shell.devices import Device, FifoDevice, NullDevice, VarDevice, VoiceDevice
from jobshell.shell.errors import PathNotFoundError, ShError
from jobshell.shell.messages import ErrorMessage, ExternalMessage, InfoMessage, ShellIo
from jobshell.shell.nodes import File, Meta, NamedFunction
from jobshell.shell.scope import compute_normalized_parts, resolve_normalized, set_path
from jobshell.shell.text import TtyLinkCtxt

logger = logging.getLogger(__name__)


class ProcessStatus(IntEnum):
    SUSPENDED = 0
    RUNNING = 1
    KILLED = 2


@dataclass
class Process:
    """A cooperative process.

    Attributes:
        pid: Process id, unique within the session
        ppid: Parent process id
        pgid: Process group id
        session_key: Owning session
        status: Suspended, running or killed
        src: Source text the process runs
        positionals: ``$0``, ``$1``, ...
        cleanups: Run once when the process is killed, with a flag
            telling whether it was an interrupt
        on_suspends: Run on STOP; those returning a truthy value are removed
        on_resumes: Run on CONT; those returning a truthy value are removed
        local_var: Variables set in this process only
        inherit_var: Snapshot of the parent's local and inherited variables
        ptags: Process tags
    """
    pid: int
    ppid: int
    pgid: int
    session_key: str
    status: ProcessStatus = ProcessStatus.RUNNING
    src: str = ""
    positionals: List[Any] = field(default_factory=lambda: ["jsh"])
    cleanups: List[Callable[..., Any]] = field(default_factory=list)
    on_suspends: List[Callable[[bool], Any]] = field(default_factory=list)
    on_resumes: List[Callable[[], Any]] = field(default_factory=list)
    local_var: Dict[str, Any] = field(default_factory=dict)
    inherit_var: Dict[str, Any] = field(default_factory=dict)
    ptags: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_leader(self) -> bool:
        return self.pid == self.pgid

    def kill(self, sigint: bool = False) -> None:
        """Mark as killed and run the cleanups once."""
        self.status = ProcessStatus.KILLED
        cleanups, self.cleanups = self.cleanups, []
        for cleanup in cleanups:
            try:
                cleanup(sigint)
            except Exception:
                logger.exception(f"Cleanup of pid {self.pid} failed")


@dataclass
class Session:
    """State of one interactive session."""
    key: str
    tty_io: ShellIo
    tty_shell: Any = None
    process: Dict[int, Process] = field(default_factory=dict)
    func: Dict[str, NamedFunction] = field(default_factory=dict)
    tty_link: Dict[str, List[TtyLinkCtxt]] = field(default_factory=dict)
    etc: Dict[str, Any] = field(default_factory=dict)
    var: Dict[str, Any] = field(default_factory=dict)
    lib: Dict[str, Any] = field(default_factory=dict)
    next_pid: int = 0
    last_exit: Dict[str, int] = field(default_factory=lambda: {"fg": 0, "bg": 0})
    verbose: bool = False


def _run_callbacks(callbacks: List[Callable[..., Any]], *args) -> List[Callable[..., Any]]:
    """Run callbacks, returning those to retain (the falsy returners)."""
    retained = []
    for callback in callbacks:
        try:
            done = callback(*args)
        except Exception:
            logger.exception("Suspend/resume callback failed")
            continue
        if not done:
            retained.append(callback)
    return retained


class Registry:
    """Process-wide table of sessions and devices."""

    def __init__(
        self,
        config: Optional[ShellConfig] = None,
        storage: Optional[SessionStorage] = None,
        speaker: Optional[Callable[..., Any]] = None,
    ):
        """Initialize registry.

        Args:
            config: Runtime configuration, defaults if None
            storage: Persistence backend, built from ``config`` if None
            speaker: Async ``speaker(text, voice)`` for the voice device
        """
        self.config = config or ShellConfig()
        self.storage = storage or SessionStorage(self.config.storage.directory)
        self.sessions: Dict[str, Session] = {}
        self.devices: Dict[str, Device] = {
            "/dev/null": NullDevice("/dev/null"),
            "/dev/voice": VoiceDevice("/dev/voice", speaker, self.config.devices.voices),
        }

    # Sessions

    def create_session(self, session_key: str, env: Optional[Dict[str, Any]] = None) -> Session:
        """Create a session and its terminal.

        Must be called with a running event loop, since the terminal starts
        a worker task.

        Args:
            session_key: Session identifier
            env: Variables merged into ``home``, defaults to ``config.env``

        Returns:
            The new session
        """
        from jobshell.shell.generators import UTIL_GENERATORS
        from jobshell.shell.tty import TtyShell

        if session_key in self.sessions:
            raise ShError(f"session {session_key} already exists", 1)

        persisted = self.rehydrate(session_key)
        tty_io = ShellIo()
        session = Session(
            key=session_key,
            tty_io=tty_io,
            var={
                "PWD": "/home",
                "OLDPWD": "",
                **(persisted.var or {}),
                **copy.deepcopy(self.config.env if env is None else env),
            },
            etc={"voices": self.voice.voices()},
            lib={"util": dict(UTIL_GENERATORS)},
        )
        self.sessions[session_key] = session

        tty_shell = TtyShell(self, session_key, tty_io, persisted.history or [])
        session.tty_shell = tty_shell
        self.devices[tty_shell.key] = tty_shell
        tty_shell.initialise()
        logger.debug(f"Created session {session_key}")
        return session

    def remove_session(self, session_key: str) -> None:
        """Kill every process (in reverse) and release the terminal."""
        session = self.sessions.get(session_key)
        if session is None:
            logger.warning(f"remove_session: {session_key}: cannot remove non-existent session")
            return
        session.verbose = False
        session.tty_shell.dispose()
        for process in reversed(list(session.process.values())):
            process.kill()
        self.devices.pop(session.tty_shell.key, None)
        del self.sessions[session_key]
        logger.debug(f"Removed session {session_key}")

    def get_session(self, session_key: str) -> Session:
        try:
            return self.sessions[session_key]
        except KeyError:
            raise ShError(f"session {session_key} does not exist", 1) from None

    @property
    def voice(self) -> VoiceDevice:
        return self.devices["/dev/voice"]

    # Processes

    def create_process(
        self,
        session_key: str,
        ppid: int,
        pgid: Optional[int] = None,
        src: str = "",
        positionals: Optional[List[Any]] = None,
        ptags: Optional[Dict[str, Any]] = None,
    ) -> Process:
        """Register a new running process.

        Args:
            session_key: Owning session
            ppid: Parent pid
            pgid: Process group, defaulting to the new pid
            src: Source text
            positionals: ``$1``, ``$2``, ...
            ptags: Process tags

        Returns:
            The process
        """
        session = self.get_session(session_key)
        pid = session.next_pid
        session.next_pid += 1
        process = Process(
            pid=pid,
            ppid=ppid,
            pgid=pid if pgid is None else pgid,
            session_key=session_key,
            src=src,
            positionals=["jsh", *(positionals or [])],
            ptags=dict(ptags or {}),
        )
        session.process[pid] = process
        return process

    def remove_process(self, pid: int, session_key: str) -> None:
        session = self.sessions.get(session_key)
        if session is not None:
            session.process.pop(pid, None)

    def get_process(self, meta: Meta) -> Optional[Process]:
        session = self.sessions.get(meta.session_key)
        return session.process.get(meta.pid) if session else None

    def get_processes(self, session_key: str, pgid: Optional[int] = None) -> List[Process]:
        """Processes of a session in creation order, optionally one group."""
        session = self.sessions.get(session_key)
        if session is None:
            logger.warning(f"get_processes: session {session_key} does not exist")
            return []
        processes = list(session.process.values())
        return processes if pgid is None else [p for p in processes if p.pgid == pgid]

    # Variables

    def get_var(self, meta: Meta, name: str) -> Any:
        """Read a variable: local, then inherited, then session ``home``."""
        process = self.get_process(meta)
        if process is not None:
            if name in process.local_var:
                return process.local_var[name]
            if name in process.inherit_var:
                return process.inherit_var[name]
        return self.get_session(meta.session_key).var.get(name)

    def set_var(self, meta: Meta, name: str, value: Any) -> None:
        """Write a variable.

        A name already local or inherited is written to this process's
        local variables, so ancestors never observe the change.
        """
        session = self.get_session(meta.session_key)
        process = session.process.get(meta.pid)
        if process is not None and (name in process.local_var or name in process.inherit_var):
            process.local_var[name] = value
        else:
            session.var[name] = value

    def _local_root(self, meta: Meta, path: str) -> Optional[Dict[str, Any]]:
        if path.startswith("/"):
            return None
        process = self.get_process(meta)
        first = path.split("/", 1)[0]
        if process is None:
            return None
        if first in process.local_var:
            return process.local_var
        if first in process.inherit_var:
            return process.inherit_var
        return None

    def get_var_deep(self, meta: Meta, path: str) -> Any:
        """Read a variable path, e.g. ``/home/foo/bar`` or ``foo/0``.

        Raises:
            PathNotFoundError: If the path does not exist
        """
        local_root = self._local_root(meta, path)
        if local_root is not None:
            return resolve_normalized([p for p in path.split("/") if p], local_root)
        session = self.get_session(meta.session_key)
        root = {"home": session.var, "etc": session.etc, "lib": session.lib}
        parts = compute_normalized_parts(path, self.get_var(meta, "PWD") or "/")
        return resolve_normalized(parts, root)

    def set_var_deep(self, meta: Meta, path: str, value: Any) -> None:
        """Write a variable path.

        Only paths below ``/home`` are writable, unless the first segment
        of a relative path names a local or inherited variable, in which
        case this process's own copy is written.

        Raises:
            ShError: If the path is not writable or its parent is missing
        """
        session = self.get_session(meta.session_key)
        local_root = self._local_root(meta, path)
        if local_root is not None:
            process = self.get_process(meta)
            parts = [p for p in path.split("/") if p]
            if local_root is process.inherit_var:
                process.local_var[parts[0]] = copy.deepcopy(process.inherit_var[parts[0]])
            set_path(parts, process.local_var, value)
            return

        parts = compute_normalized_parts(path, self.get_var(meta, "PWD") or "/")
        if not (len(parts) > 1 and parts[0] == "home"):
            raise ShError("only the home directory is writable", 1)
        set_path(parts, {"home": session.var}, value)

    def get_positional(self, pid: int, session_key: str, index: int) -> Any:
        process = self.get_session(session_key).process.get(pid)
        if process is None or index >= len(process.positionals):
            return ""
        return process.positionals[index]

    def get_last_exit_code(self, meta: Meta) -> int:
        return self.get_session(meta.session_key).last_exit["bg" if meta.background else "fg"]

    def set_last_exit_code(self, meta: Meta, exit_code: Optional[int]) -> None:
        session = self.sessions.get(meta.session_key)
        if session is None:
            logger.warning(f"session {meta.session_key} no longer exists")
        elif isinstance(exit_code, int):
            session.last_exit["bg" if meta.background else "fg"] = exit_code
        else:
            logger.debug(f"process {meta.pid} had no exit code")

    # Functions

    def add_func(self, session_key: str, name: str, file: File) -> None:
        self.get_session(session_key).func[name] = NamedFunction(key=name, file=file, src=file.src)

    def get_func(self, session_key: str, name: str) -> Optional[NamedFunction]:
        return self.get_session(session_key).func.get(name)

    def get_funcs(self, session_key: str) -> List[NamedFunction]:
        return list(self.get_session(session_key).func.values())

    # Devices

    def create_fifo(self, key: str, size: Optional[int] = None) -> FifoDevice:
        fifo = FifoDevice(key, size)
        self.devices[key] = fifo
        return fifo

    def create_var_device(self, meta: Meta, path: str, mode: str) -> VarDevice:
        device = VarDevice(self, meta, path, mode)
        self.devices[device.key] = device
        return device

    def remove_device(self, key: str) -> None:
        self.devices.pop(key, None)

    def resolve(self, fd: int, meta: Meta) -> Device:
        """Device bound to descriptor ``fd`` of ``meta``.

        Raises:
            ShError: If the descriptor is not open
        """
        device = self.devices.get(meta.fd.get(fd, ""))
        if device is None:
            raise ShError(f"{fd}: bad file descriptor", 1)
        return device

    # Signals

    def kill(
        self,
        session_key: str,
        pids: List[int],
        stop: bool = False,
        cont: bool = False,
        sigint: bool = False,
        group: bool = False,
    ) -> None:
        """Kill, suspend or resume processes.

        A group leader, or any process when ``group`` is set, stands for
        its whole process group, processed in reverse registration order.

        Args:
            session_key: Session of the processes
            pids: Target pids; unknown pids are skipped
            stop: Suspend instead of kill
            cont: Resume instead of kill
            sigint: The kill is an interrupt
            group: Apply to the whole process group
        """
        session = self.get_session(session_key)
        for pid in pids:
            process = session.process.get(pid)
            if process is None:
                continue
            if process.pgid == pid or group:
                processes = list(reversed(self.get_processes(session_key, process.pgid)))
            else:
                processes = [process]
            self.kill_processes(processes, stop=stop, cont=cont, sigint=sigint)

    def kill_processes(
        self,
        processes: List[Process],
        stop: bool = False,
        cont: bool = False,
        sigint: bool = False,
        global_: bool = False,
    ) -> None:
        """Apply a signal to exactly ``processes``, in the given order.

        Args:
            processes: Processes to signal
            stop: Suspend, running ``on_suspends``
            cont: Resume, running ``on_resumes``
            sigint: The kill is an interrupt
            global_: The whole session is being paused
        """
        for process in processes:
            if stop:
                process.status = ProcessStatus.SUSPENDED
                callbacks, process.on_suspends = process.on_suspends, []
                process.on_suspends = _run_callbacks(callbacks, global_) + process.on_suspends
                self._notify_leader(process, "paused")
            elif cont:
                process.status = ProcessStatus.RUNNING
                callbacks, process.on_resumes = process.on_resumes, []
                process.on_resumes = _run_callbacks(callbacks) + process.on_resumes
                self._notify_leader(process, "resumed")
            else:
                process.kill(sigint)

    def _notify_leader(self, process: Process, act: str) -> None:
        if process.is_leader and process.pid != 0:
            self.write_external(process.session_key, {
                "key": "process-leader",
                "act": act,
                "pid": process.pid,
            })

    def pause_session(self, session_key: str) -> None:
        """Suspend every process of the session, e.g. when its terminal is hidden."""
        self.kill_processes(self.get_processes(session_key), stop=True, global_=True)
        self.write_external(session_key, {"key": "interactive", "act": "paused"})

    def resume_session(self, session_key: str) -> None:
        self.kill_processes(self.get_processes(session_key), cont=True, global_=True)
        self.write_external(session_key, {"key": "interactive", "act": "resumed"})

    # Terminal

    def write_msg(self, session_key: str, msg: str, level: str = "info") -> None:
        """Show an info or error message on the session's terminal."""
        message = ErrorMessage(msg=msg) if level == "error" else InfoMessage(msg=msg)
        self.get_session(session_key).tty_io.write_to_readers(message)

    def write_external(self, session_key: str, msg: Dict[str, Any]) -> None:
        session = self.sessions.get(session_key)
        if session is not None:
            session.tty_io.write_to_readers(ExternalMessage(msg=msg))

    def add_tty_line_ctxts(self, session_key: str, line_text: str, ctxts: List[TtyLinkCtxt]) -> None:
        """Register clickable links of a line; ``line_text`` has no ANSI codes."""
        self.get_session(session_key).tty_link[line_text] = ctxts

    def remove_tty_line_ctxts(self, session_key: str, line_text: str) -> None:
        self.get_session(session_key).tty_link.pop(line_text, None)

    def on_tty_link(
        self,
        session_key: str,
        line_text: str,
        link_text: str,
        link_start_index: int,
        line_number: int = 0,
    ) -> bool:
        """Invoke the callback of a clicked link; returns whether one was found."""
        for ctxt in self.get_session(session_key).tty_link.get(line_text, []):
            if ctxt.link_start_index == link_start_index and ctxt.link_text == link_text:
                ctxt.callback(line_number)
                return True
        return False

    # Persistence

    def persist_history(self, session_key: str) -> None:
        if self.config.history.enabled:
            session = self.get_session(session_key)
            self.storage.save_history(session_key, session.tty_shell.get_history())

    def persist_home(self, session_key: str) -> None:
        self.storage.save_vars(session_key, self.get_session(session_key).var)

    def rehydrate(self, session_key: str) -> Rehydrated:
        return self.storage.rehydrate(session_key)
