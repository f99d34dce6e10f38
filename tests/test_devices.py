"""Tests for devices."""

import asyncio

import pytest

from jobshell.shell.devices import (
    EOF,
    DataChunk,
    FifoDevice,
    NullDevice,
    VarDeviceMode,
    VoiceDevice,
)
from jobshell.shell.errors import ShError
from jobshell.shell.nodes import Meta


class TestFifoDevice:
    """Test the FIFO."""

    async def test_order_and_eof(self):
        """Test that values come out in order, then EOF."""
        fifo = FifoDevice("/dev/fifo-test")
        await fifo.write_data("a")
        await fifo.write_data("b")
        await fifo.write_data(EOF)
        assert (await fifo.read_data()).data == "a"
        assert (await fifo.read_data()).data == "b"
        assert (await fifo.read_data()).eof
        assert (await fifo.read_data()).eof

    async def test_reader_waits_for_writer(self):
        """Test that a read on an empty FIFO waits."""
        fifo = FifoDevice("/dev/fifo-test")
        reader = asyncio.ensure_future(fifo.read_data())
        await asyncio.sleep(0)
        assert not reader.done()
        await fifo.write_data(1)
        assert (await reader).data == 1

    async def test_backpressure(self):
        """Test that writers wait once the FIFO is full."""
        fifo = FifoDevice("/dev/fifo-test", size=1)
        await fifo.write_data(1)
        writer = asyncio.ensure_future(fifo.write_data(2))
        await asyncio.sleep(0)
        assert not writer.done()
        assert (await fifo.read_data()).data == 1
        await writer
        assert list(fifo.buffer) == [2]

    async def test_discard_after_finished_reading(self):
        """Test that a stopped reader releases and silences writers."""
        fifo = FifoDevice("/dev/fifo-test", size=1)
        await fifo.write_data(1)
        writer = asyncio.ensure_future(fifo.write_data(2))
        await asyncio.sleep(0)
        fifo.finished_reading()
        await writer
        await fifo.write_data(3)
        assert list(fifo.buffer) == [1]

    async def test_chunks(self):
        """Test single reads from chunks and chunked reads."""
        fifo = FifoDevice("/dev/fifo-test")
        await fifo.write_data(DataChunk([1, 2]))
        await fifo.write_data(DataChunk([]))
        await fifo.write_data(3)
        assert (await fifo.read_data(once=True)).data == 1
        result = await fifo.read_data(chunks=True)
        assert result.data.items == [2, 3]

    async def test_read_all(self):
        """Test draining the buffer."""
        fifo = FifoDevice("/dev/fifo-test")
        await fifo.write_data("a")
        await fifo.write_data(DataChunk(["b", "c"]))
        assert fifo.read_all() == ["a", "b", "c"]
        assert fifo.read_all() == []


class TestNullDevice:
    """Test /dev/null."""

    async def test_null(self):
        """Test that writes vanish and reads are at EOF."""
        null = NullDevice("/dev/null")
        await null.write_data("foo")
        assert (await null.read_data()).eof


class TestVarDevice:
    """Test variable redirects."""

    @pytest.fixture
    def meta(self, session):
        return Meta(session_key=session.key, pid=0, fd={})

    async def test_last(self, registry, session, meta):
        """Test that the last value wins."""
        device = registry.create_var_device(meta, "x", VarDeviceMode.LAST)
        await device.write_data("a")
        await device.write_data(DataChunk(["b", "c"]))
        assert session.var["x"] == "c"

    async def test_array(self, registry, session, meta):
        """Test appending to an existing array."""
        session.var["x"] = ["a"]
        device = registry.create_var_device(meta, "x", VarDeviceMode.ARRAY)
        await device.write_data("b")
        assert session.var["x"] == ["a", "b"]

    async def test_array_from_inherited_value(self, registry, session):
        """Test that appending leaves the parent's list unchanged."""
        shared = ["a"]
        process = registry.create_process(session.key, ppid=0)
        process.inherit_var["x"] = shared
        child = Meta(session_key=session.key, pid=process.pid, pgid=process.pgid)
        device = registry.create_var_device(child, "x", VarDeviceMode.ARRAY)
        await device.write_data("b")
        assert process.local_var["x"] == ["a", "b"]
        assert shared == ["a"]

    async def test_array_replaces_non_list(self, registry, session, meta):
        """Test that a non-array value is replaced."""
        session.var["x"] = "a"
        device = registry.create_var_device(meta, "x", VarDeviceMode.ARRAY)
        await device.write_data("b")
        assert session.var["x"] == ["b"]

    async def test_fresh_array(self, registry, session, meta):
        """Test that a fresh array starts empty."""
        session.var["x"] = ["old"]
        device = registry.create_var_device(meta, "/home/x", VarDeviceMode.FRESH_ARRAY)
        await device.write_data("a")
        await device.write_data("b")
        assert session.var["x"] == ["a", "b"]

    async def test_not_readable(self, registry, meta):
        """Test that variable redirects cannot be read."""
        device = registry.create_var_device(meta, "x", VarDeviceMode.LAST)
        with pytest.raises(ShError):
            await device.read_data()

    async def test_unknown_mode(self, registry, meta):
        """Test an unknown mode."""
        with pytest.raises(ValueError):
            registry.create_var_device(meta, "x", "sometimes")


class TestVoiceDevice:
    """Test the speech device."""

    @pytest.fixture
    def spoken(self):
        return []

    @pytest.fixture
    def voice(self, spoken):
        async def speaker(text, voice):
            spoken.append((text, voice))
        return VoiceDevice(speaker=speaker, voices=["default", "robot"])

    async def test_speaks(self, voice, spoken):
        """Test that each value is spoken."""
        await voice.write_data("hello")
        await voice.write_data(DataChunk([1, {"text": "beep", "voice": "robot"}]))
        assert spoken == [("hello", None), ("1", None), ("beep", "robot")]

    async def test_set_voice(self, voice, spoken):
        """Test selecting a voice."""
        voice.set_voice("robot")
        await voice.write_data("hi")
        assert spoken == [("hi", "robot")]
        with pytest.raises(ShError):
            voice.set_voice("nope")

    async def test_pause_and_resume(self, voice, spoken):
        """Test that a paused device waits until resumed."""
        voice.pause()
        writer = asyncio.ensure_future(voice.write_data("later"))
        await asyncio.sleep(0)
        assert spoken == []
        voice.resume()
        await writer
        assert spoken == [("later", None)]

    async def test_cancel_utterance(self, spoken):
        """Test cancelling a long utterance."""
        started = asyncio.Event()

        async def slow(text, voice):
            started.set()
            await asyncio.sleep(10)

        voice = VoiceDevice(speaker=slow)
        writer = asyncio.ensure_future(voice.write_data("long"))
        await started.wait()
        voice.cancel()
        await asyncio.wait_for(writer, 1)
