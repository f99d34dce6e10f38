"""Tests for the per-process API."""

import asyncio

import pytest

from jobshell.shell.devices import EOF, DataChunk
from jobshell.shell.errors import ProcessError
from jobshell.shell.nodes import Meta
from jobshell.shell.process_api import ProcessApi, add_stdin_to_args
from jobshell.shell.session import ProcessStatus


class Job:
    """A process of the test session reading from a FIFO."""

    def __init__(self, registry, session):
        self.registry = registry
        self.process = registry.create_process(session.key, ppid=0)
        self.stdin = registry.create_fifo(f"/dev/fifo-test-{self.process.pid}")
        self.meta = Meta(
            session_key=session.key,
            pid=self.process.pid,
            pgid=self.process.pgid,
            fd={0: self.stdin.key},
        )
        self.api = ProcessApi(registry, self.meta)

    def kill(self):
        self.registry.kill(self.meta.session_key, [self.process.pid])

    def stop(self, global_=False):
        if global_:
            self.registry.pause_session(self.meta.session_key)
        else:
            self.registry.kill(self.meta.session_key, [self.process.pid], stop=True)

    def cont(self):
        self.registry.kill(self.meta.session_key, [self.process.pid], cont=True)


@pytest.fixture
def job(registry, session):
    return Job(registry, session)


class TestRead:
    """Test reading stdin."""

    async def test_values_then_eof(self, job):
        """Test reading values in order, then end of stream."""
        await job.stdin.write_data("a")
        await job.stdin.write_data("b")
        job.stdin.finished_writing()
        assert [await job.api.read() for _ in range(3)] == ["a", "b", EOF]

    async def test_chunks(self, job):
        """Test coalescing buffered values."""
        await job.stdin.write_data(1)
        await job.stdin.write_data(2)
        chunk = await job.api.read(chunks=True)
        assert isinstance(chunk, DataChunk)
        assert chunk.items == [1, 2]

    async def test_killed_while_reading(self, job):
        """Test that a kill fails a pending read."""
        reading = asyncio.ensure_future(job.api.read())
        await asyncio.sleep(0)
        job.kill()
        with pytest.raises(ProcessError):
            await reading
        assert job.process.cleanups == []

    async def test_suspended_read_waits(self, job):
        """Test that a suspended process reads once resumed."""
        job.stop()
        await job.stdin.write_data("x")
        reading = asyncio.ensure_future(job.api.read())
        await asyncio.sleep(0.01)
        assert not reading.done()
        job.cont()
        assert await asyncio.wait_for(reading, 1) == "x"


class TestSleep:
    """Test sleeping."""

    async def test_sleep(self, job):
        """Test a plain sleep."""
        await asyncio.wait_for(job.api.sleep(0.01), 1)
        assert job.process.on_suspends == []

    async def test_killed_while_sleeping(self, job):
        """Test that a kill ends a sleep."""
        sleeping = asyncio.ensure_future(job.api.sleep(10))
        await asyncio.sleep(0)
        job.kill()
        with pytest.raises(ProcessError):
            await asyncio.wait_for(sleeping, 1)

    async def test_paused_countdown(self, job):
        """Test that the countdown stops while suspended."""
        sleeping = asyncio.ensure_future(job.api.sleep(0.02))
        await asyncio.sleep(0)
        job.stop()
        await asyncio.sleep(0.05)
        assert not sleeping.done()
        job.cont()
        await asyncio.wait_for(sleeping, 1)

    async def test_sleep_started_while_suspended(self, job):
        """Test that a sleep begun while suspended waits for the resume."""
        job.stop()
        sleeping = asyncio.ensure_future(job.api.sleep(0.02))
        await asyncio.sleep(0.05)
        assert not sleeping.done()
        job.cont()
        await asyncio.sleep(0)
        assert not sleeping.done()
        await asyncio.wait_for(sleeping, 1)

    async def test_poll(self, job):
        """Test polling counts up."""
        counts = []
        async for count in job.api.poll([0.01]):
            counts.append(count)
            if count == 3:
                break
        assert counts == [1, 2, 3]


class TestSuspendResume:
    """Test suspend and resume helpers."""

    async def test_await_resume(self, job):
        """Test waiting for a resume."""
        job.stop()
        waiting = asyncio.ensure_future(job.api.await_resume())
        await asyncio.sleep(0)
        assert not waiting.done()
        job.cont()
        await asyncio.wait_for(waiting, 1)
        assert job.process.on_resumes == []

    async def test_await_resume_killed(self, job):
        """Test that a kill ends the wait."""
        waiting = asyncio.ensure_future(job.api.await_resume())
        await asyncio.sleep(0)
        job.kill()
        with pytest.raises(ProcessError):
            await waiting

    async def test_throw_on_pause(self, job):
        """Test failing a future when the job stops."""
        future = job.api.throw_on_pause(RuntimeError("paused"))
        job.stop()
        with pytest.raises(RuntimeError, match="paused"):
            await future
        assert job.process.on_suspends == []

    async def test_throw_on_global_pause_only(self, job):
        """Test ignoring single job stops when only session pauses count."""
        future = job.api.throw_on_pause(RuntimeError("paused"), global_=True)
        job.stop()
        assert not future.done()
        job.cont()
        job.stop(global_=True)
        with pytest.raises(RuntimeError):
            await future

    async def test_callbacks_kept_until_truthy(self, job):
        """Test the retention of suspend callbacks."""
        calls = []
        job.api.add_suspend(lambda g: calls.append(("watch", g)))
        job.api.add_suspend(lambda g: calls.append(("once", g)) or True)
        job.stop()
        job.cont()
        job.stop()
        assert calls == [("watch", False), ("once", False), ("watch", False)]


class TestEagerReadLoop:
    """Test handling values while reading eagerly."""

    async def test_handles_every_value(self, job):
        """Test values arriving after each handler finished."""
        handled = []

        async def body(datum):
            handled.append(datum)

        loop = asyncio.ensure_future(job.api.eager_read_loop(body))
        for datum in (1, 2, 3):
            await job.stdin.write_data(datum)
            await asyncio.sleep(0.01)
        job.stdin.finished_writing()
        await asyncio.wait_for(loop, 1)
        assert handled == [1, 2, 3]

    async def test_newer_value_interrupts(self, job):
        """Test abandoning a handler when the next value arrives."""
        finished, interrupted = [], []
        release = asyncio.Event()

        async def body(datum):
            if datum == "slow":
                await release.wait()
            finished.append(datum)

        loop = asyncio.ensure_future(job.api.eager_read_loop(body, interrupted.append))
        await job.stdin.write_data("slow")
        await asyncio.sleep(0.01)
        await job.stdin.write_data("fast")
        job.stdin.finished_writing()
        await asyncio.wait_for(loop, 1)
        assert finished == ["fast"]
        assert interrupted == ["slow"]

    async def test_last_value_completes(self, job):
        """Test that end of stream lets the last handler finish."""
        finished = []

        async def body(datum):
            await asyncio.sleep(0.01)
            finished.append(datum)

        await job.stdin.write_data("only")
        job.stdin.finished_writing()
        await asyncio.wait_for(job.api.eager_read_loop(body), 1)
        assert finished == ["only"]

    async def test_handler_error(self, job):
        """Test that a failing handler ends the loop."""

        async def body(datum):
            raise ValueError(datum)

        await job.stdin.write_data("bad")
        with pytest.raises(ValueError, match="bad"):
            await asyncio.wait_for(job.api.eager_read_loop(body), 1)


class TestHelpers:
    """Test helper functions."""

    def test_add_stdin_to_args(self):
        """Test placing stdin values among the arguments."""
        assert add_stdin_to_args("v", ["a", "-", "b"]) == ["a", "v", "b"]
        assert add_stdin_to_args("v", ["a"]) == ["a", "v"]

    async def test_is_running(self, job):
        """Test the running state."""
        assert job.api.is_running()
        job.stop()
        assert job.process.status == ProcessStatus.SUSPENDED
        assert not job.api.is_running()

    def test_uid(self):
        """Test short identifiers."""
        uid = ProcessApi.get_uid()
        assert len(uid) == 11
        assert uid != ProcessApi.get_uid()

    async def test_kill_error(self, job):
        """Test building kill errors for the process."""
        error = job.api.get_kill_error(3)
        assert error.pid == job.process.pid
        assert error.exit_code == 3
