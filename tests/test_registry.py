"""Tests for the session and process registry."""

import pytest

from jobshell.shell.errors import PathNotFoundError, ShError
from jobshell.shell.nodes import Meta
from jobshell.shell.session import ProcessStatus
from jobshell.shell.text import TtyLinkCtxt


def meta_of(process):
    return Meta(session_key=process.session_key, pid=process.pid, ppid=process.ppid, pgid=process.pgid)


class TestSessions:
    """Test session lifecycle."""

    async def test_create(self, registry, session):
        """Test a new session's initial state."""
        assert session.var["PWD"] == "/home"
        assert "util" in session.lib
        assert session.etc["voices"] == ["default"]
        assert 0 in session.process
        assert registry.devices[session.tty_shell.key] is session.tty_shell

    async def test_duplicate(self, registry, session):
        """Test that keys are unique."""
        with pytest.raises(ShError):
            registry.create_session(session.key)

    async def test_env(self, registry):
        """Test seeding variables."""
        session = registry.create_session("other", env={"foo": [1]})
        assert session.var["foo"] == [1]

    async def test_remove(self, registry, session):
        """Test that removal kills processes and frees the terminal."""
        child = registry.create_process(session.key, ppid=0)
        calls = []
        child.cleanups.append(calls.append)
        key = session.tty_shell.key
        registry.remove_session(session.key)
        assert calls == [False]
        assert child.status == ProcessStatus.KILLED
        assert key not in registry.devices
        assert session.key not in registry.sessions

    async def test_get_missing(self, registry):
        """Test looking up an unknown session."""
        with pytest.raises(ShError):
            registry.get_session("nope")


class TestProcesses:
    """Test the process table."""

    async def test_pids(self, registry, session):
        """Test pid allocation and group defaults."""
        leader = registry.create_process(session.key, ppid=0, positionals=["a"])
        member = registry.create_process(session.key, ppid=leader.pid, pgid=leader.pid)
        assert member.pid == leader.pid + 1
        assert leader.is_leader and not member.is_leader
        assert leader.positionals == ["jsh", "a"]
        assert registry.get_processes(session.key, leader.pgid) == [leader, member]
        registry.remove_process(member.pid, session.key)
        assert registry.get_processes(session.key, leader.pgid) == [leader]

    async def test_kill_runs_cleanups_once(self, registry, session):
        """Test that cleanups run once with the interrupt flag."""
        process = registry.create_process(session.key, ppid=0)
        calls = []
        process.cleanups.append(calls.append)
        registry.kill_processes([process], sigint=True)
        registry.kill_processes([process])
        assert calls == [True]

    async def test_kill_group_in_reverse(self, registry, session):
        """Test that killing a leader kills its group, newest first."""
        leader = registry.create_process(session.key, ppid=0)
        member = registry.create_process(session.key, ppid=leader.pid, pgid=leader.pid)
        order = []
        leader.cleanups.append(lambda sigint: order.append(leader.pid))
        member.cleanups.append(lambda sigint: order.append(member.pid))
        registry.kill(session.key, [leader.pid])
        assert order == [member.pid, leader.pid]

    async def test_kill_member_only(self, registry, session):
        """Test that a non-leader is killed alone unless grouped."""
        leader = registry.create_process(session.key, ppid=0)
        member = registry.create_process(session.key, ppid=leader.pid, pgid=leader.pid)
        registry.kill(session.key, [member.pid, 999])
        assert member.status == ProcessStatus.KILLED
        assert leader.status == ProcessStatus.RUNNING
        registry.kill(session.key, [member.pid], group=True)
        assert leader.status == ProcessStatus.KILLED

    async def test_stop_and_continue(self, registry, session, term):
        """Test that callbacks returning truthy values are dropped."""
        process = registry.create_process(session.key, ppid=0)
        suspends, resumes = [], []
        process.on_suspends.append(lambda global_: suspends.append(global_))
        process.on_suspends.append(lambda global_: True)
        process.on_resumes.append(lambda: resumes.append(1) or True)
        registry.kill(session.key, [process.pid], stop=True)
        registry.kill(session.key, [process.pid], stop=True)
        assert suspends == [False, False]
        assert len(process.on_suspends) == 1
        assert process.status == ProcessStatus.SUSPENDED
        registry.kill(session.key, [process.pid], cont=True)
        registry.kill(session.key, [process.pid], cont=True)
        assert resumes == [1]
        assert process.status == ProcessStatus.RUNNING
        acts = [m["act"] for m in term.external if m.get("key") == "process-leader"]
        assert acts == ["paused", "paused", "resumed", "resumed"]

    async def test_pause_session(self, registry, session, term):
        """Test pausing and resuming a whole session."""
        process = registry.create_process(session.key, ppid=0)
        flags = []
        process.on_suspends.append(flags.append)
        registry.pause_session(session.key)
        assert flags == [True]
        assert process.status == ProcessStatus.SUSPENDED
        registry.resume_session(session.key)
        assert process.status == ProcessStatus.RUNNING
        interactive = [m["act"] for m in term.external if m.get("key") == "interactive"]
        assert interactive == ["paused", "resumed"]


class TestVariables:
    """Test variable scoping."""

    async def test_lookup_order(self, registry, session):
        """Test local, then inherited, then session variables."""
        process = registry.create_process(session.key, ppid=0)
        meta = meta_of(process)
        session.var["x"] = "home"
        assert registry.get_var(meta, "x") == "home"
        process.inherit_var["x"] = "inherited"
        assert registry.get_var(meta, "x") == "inherited"
        process.local_var["x"] = "local"
        assert registry.get_var(meta, "x") == "local"
        assert registry.get_var(meta, "missing") is None

    async def test_set_shadows_inherited(self, registry, session):
        """Test that writing an inherited name stays in the process."""
        process = registry.create_process(session.key, ppid=0)
        meta = meta_of(process)
        process.inherit_var["x"] = 1
        registry.set_var(meta, "x", 2)
        registry.set_var(meta, "y", 3)
        assert process.local_var == {"x": 2}
        assert process.inherit_var["x"] == 1
        assert session.var["y"] == 3

    async def test_deep_paths(self, registry, session):
        """Test reading and writing nested paths."""
        meta = Meta(session_key=session.key)
        registry.set_var_deep(meta, "/home/foo", {"bar": [1]})
        registry.set_var_deep(meta, "foo/bar/1", 2)
        assert registry.get_var_deep(meta, "/home/foo/bar") == [1, 2]
        assert registry.get_var_deep(meta, "/etc/voices") == ["default"]
        with pytest.raises(PathNotFoundError):
            registry.get_var_deep(meta, "nope")

    async def test_only_home_writable(self, registry, session):
        """Test that other branches are read-only."""
        meta = Meta(session_key=session.key)
        with pytest.raises(ShError):
            registry.set_var_deep(meta, "/etc/voices", [])
        with pytest.raises(ShError):
            registry.set_var_deep(meta, "/home", {})

    async def test_deep_inherited_copy(self, registry, session):
        """Test that nested writes to inherited values copy them first."""
        process = registry.create_process(session.key, ppid=0)
        shared = {"a": 1}
        process.inherit_var["obj"] = shared
        registry.set_var_deep(meta_of(process), "obj/a", 2)
        assert shared == {"a": 1}
        assert process.local_var["obj"] == {"a": 2}

    async def test_last_exit_codes(self, registry, session):
        """Test foreground and background exit slots."""
        registry.set_last_exit_code(Meta(session_key=session.key), 3)
        registry.set_last_exit_code(Meta(session_key=session.key, background=True), 4)
        registry.set_last_exit_code(Meta(session_key=session.key), None)
        assert session.last_exit == {"fg": 3, "bg": 4}
        assert registry.get_last_exit_code(Meta(session_key=session.key, background=True)) == 4


class TestDevices:
    """Test device bookkeeping."""

    async def test_resolve(self, registry, session):
        """Test resolving descriptors."""
        fifo = registry.create_fifo("/dev/fifo-x")
        meta = Meta(session_key=session.key, fd={0: "/dev/fifo-x", 1: "/dev/null"})
        assert registry.resolve(0, meta) is fifo
        with pytest.raises(ShError):
            registry.resolve(2, meta)
        registry.remove_device("/dev/fifo-x")
        with pytest.raises(ShError):
            registry.resolve(0, meta)


class TestTtyLinks:
    """Test clickable terminal links."""

    async def test_on_tty_link(self, registry, session):
        """Test that only a matching link fires."""
        clicked = []
        ctxt = TtyLinkCtxt(line_text="- yes", link_text="yes", link_start_index=2, callback=clicked.append)
        registry.add_tty_line_ctxts(session.key, "- yes", [ctxt])
        assert not registry.on_tty_link(session.key, "- yes", "no", 2)
        assert registry.on_tty_link(session.key, "- yes", "yes", 2, line_number=5)
        assert clicked == [5]
        registry.remove_tty_line_ctxts(session.key, "- yes")
        assert not registry.on_tty_link(session.key, "- yes", "yes", 2)
