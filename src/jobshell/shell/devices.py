"""Devices: the read/write endpoints bound in a process's descriptor table.

Every device implements the same small contract:

- ``read_data(once=False, chunks=False)`` returns a :class:`ReadResult`
- ``write_data(value)`` is awaited by writers
- ``finished_reading()`` and ``finished_writing()`` are idempotent
  half-close signals

The FIFO connects pipeline stages and collects command substitution
output. The other devices are sinks selected by redirection.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Deque, List, Optional

from jobshell.shell.errors import PathNotFoundError, ShError

if TYPE_CHECKING:
    from jobshell.shell.nodes import Meta
    from jobshell.shell.session import Registry

logger = logging.getLogger(__name__)


class _Eof:
    def __repr__(self) -> str:
        return "EOF"


EOF = _Eof()
"""Written to a device to signal the end of a stream."""


@dataclass
class ReadResult:
    """Outcome of a read: a value, or end of stream."""
    data: Any = None
    eof: bool = False


@dataclass
class DataChunk:
    """Several values delivered by a single read."""
    items: List[Any] = field(default_factory=list)


def is_data_chunk(value: Any) -> bool:
    return isinstance(value, DataChunk)


class Device(ABC):
    """Base class of all devices."""

    def __init__(self, key: str):
        self.key = key

    @abstractmethod
    async def read_data(self, once: bool = False, chunks: bool = False) -> ReadResult:
        """Read the next value, or a chunk of buffered values."""

    @abstractmethod
    async def write_data(self, value: Any) -> None:
        """Write a value."""

    def finished_reading(self) -> None:
        """Signal that no more reads will happen."""

    def finished_writing(self) -> None:
        """Signal that no more writes will happen."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.key!r})"


class FifoDevice(Device):
    """Ordered buffer connecting a writer to a reader.

    Writers past ``size`` wait until the reader dequeues or stops reading.
    Once the reader has stopped, later writes are discarded.
    """

    def __init__(self, key: str, size: Optional[int] = None):
        """Initialize FIFO.

        Args:
            key: Device key
            size: Capacity before writers wait, or None for unbounded
        """
        super().__init__(key)
        self.size = size
        self.buffer: Deque[Any] = deque()
        self.reading_finished = False
        self.writing_finished = False
        self._readers: List[asyncio.Future] = []
        self._writers: List[asyncio.Future] = []

    async def read_data(self, once: bool = False, chunks: bool = False) -> ReadResult:
        while not self.buffer:
            if self.writing_finished:
                return ReadResult(eof=True)
            waiter = asyncio.get_running_loop().create_future()
            self._readers.append(waiter)
            try:
                await waiter
            finally:
                if waiter in self._readers:
                    self._readers.remove(waiter)

        if chunks:
            items: List[Any] = []
            while self.buffer:
                item = self.buffer.popleft()
                items.extend(item.items if isinstance(item, DataChunk) else [item])
            result = ReadResult(data=DataChunk(items))
        else:
            head = self.buffer[0]
            if isinstance(head, DataChunk):
                data = head.items.pop(0) if head.items else None
                if not head.items:
                    self.buffer.popleft()
            else:
                data = self.buffer.popleft()
            result = ReadResult(data=data)

        self._wake(self._writers)
        return result

    async def write_data(self, value: Any) -> None:
        if value is EOF:
            self.finished_writing()
            return
        while self.size is not None and len(self.buffer) >= self.size and not self.reading_finished:
            waiter = asyncio.get_running_loop().create_future()
            self._writers.append(waiter)
            try:
                await waiter
            finally:
                if waiter in self._writers:
                    self._writers.remove(waiter)
        if self.reading_finished:
            return
        if isinstance(value, DataChunk) and not value.items:
            return
        self.buffer.append(value)
        self._wake(self._readers)

    def read_all(self) -> List[Any]:
        """Remove and return every buffered value, flattening chunks."""
        items: List[Any] = []
        while self.buffer:
            item = self.buffer.popleft()
            items.extend(item.items if isinstance(item, DataChunk) else [item])
        self._wake(self._writers)
        return items

    def finished_reading(self) -> None:
        self.reading_finished = True
        self._wake(self._writers)

    def finished_writing(self) -> None:
        self.writing_finished = True
        self._wake(self._readers)

    @staticmethod
    def _wake(waiters: List[asyncio.Future]) -> None:
        for waiter in list(waiters):
            if not waiter.done():
                waiter.set_result(None)


class NullDevice(Device):
    """Discards writes; reads are immediately at end of stream."""

    async def read_data(self, once: bool = False, chunks: bool = False) -> ReadResult:
        return ReadResult(eof=True)

    async def write_data(self, value: Any) -> None:
        return None


class VarDeviceMode:
    LAST = "last"
    ARRAY = "array"
    FRESH_ARRAY = "fresh-array"


class VarDevice(Device):
    """Writes values into a variable path.

    Modes:
        last: Overwrite with the most recent value
        array: Append to an array, creating it if needed
        fresh-array: Start a new array on the first write, then append
    """

    def __init__(self, registry: "Registry", meta: "Meta", path: str, mode: str = VarDeviceMode.LAST):
        super().__init__(f"/dev/var-{uuid.uuid4()}")
        if mode not in (VarDeviceMode.LAST, VarDeviceMode.ARRAY, VarDeviceMode.FRESH_ARRAY):
            raise ValueError(f"Unknown variable device mode: {mode}")
        self.registry = registry
        self.meta = meta
        self.path = path
        self.mode = mode
        self._fresh = mode == VarDeviceMode.FRESH_ARRAY

    async def read_data(self, once: bool = False, chunks: bool = False) -> ReadResult:
        raise ShError(f"{self.path}: cannot read from a variable redirect")

    async def write_data(self, value: Any) -> None:
        if value is EOF:
            return
        items = value.items if isinstance(value, DataChunk) else [value]
        for item in items:
            self._write_one(item)

    def _write_one(self, item: Any) -> None:
        if self.mode == VarDeviceMode.LAST:
            self.registry.set_var_deep(self.meta, self.path, item)
            return

        if self._fresh:
            self._fresh = False
            self.registry.set_var_deep(self.meta, self.path, [item])
            return

        try:
            current = self.registry.get_var_deep(self.meta, self.path)
        except PathNotFoundError:
            current = None
        # A new list, since `current` may be shared with an ancestor process
        appended = [*current, item] if isinstance(current, list) else [item]
        self.registry.set_var_deep(self.meta, self.path, appended)


Speaker = Callable[[str, Optional[str]], Awaitable[None]]


async def log_speaker(text: str, voice: Optional[str] = None) -> None:
    """Default speaker: log what would be said."""
    logger.info(f"say ({voice or 'default'}): {text}")


class VoiceDevice(Device):
    """Speech sink wrapping a pluggable async ``speaker(text, voice)``."""

    def __init__(self, key: str = "/dev/voice", speaker: Optional[Speaker] = None, voices: Optional[List[str]] = None):
        super().__init__(key)
        self.speaker = speaker or log_speaker
        self.default_voices = list(voices or ["default"])
        self.voice: Optional[str] = None
        self._resumed = asyncio.Event()
        self._resumed.set()
        self._current: Optional[asyncio.Task] = None

    def voices(self) -> List[str]:
        return list(self.default_voices)

    def set_voice(self, voice: Optional[str]) -> None:
        if voice is not None and voice not in self.default_voices:
            raise ShError(f"unknown voice: {voice}")
        self.voice = voice

    async def read_data(self, once: bool = False, chunks: bool = False) -> ReadResult:
        return ReadResult(eof=True)

    async def write_data(self, value: Any) -> None:
        if value is EOF:
            return
        items = value.items if isinstance(value, DataChunk) else [value]
        for item in items:
            await self._resumed.wait()
            voice = self.voice
            if isinstance(item, dict) and "text" in item:
                # e.g. {"voice": "default", "text": "hello"} from `say -v`
                voice = item.get("voice") or voice
                item = item["text"]
            text = item if isinstance(item, str) else str(item)
            task = asyncio.ensure_future(self.speaker(text, voice))
            self._current = task
            try:
                await asyncio.wait([task])
            except asyncio.CancelledError:
                task.cancel()
                raise
            finally:
                self._current = None
            if task.cancelled():
                logger.debug(f"Utterance cancelled: {text!r}")
            elif task.exception() is not None:
                raise task.exception()

    def pause(self) -> None:
        self._resumed.clear()

    def resume(self) -> None:
        self._resumed.set()

    def cancel(self) -> None:
        """Stop the current utterance and unblock a paused writer."""
        if self._current is not None and not self._current.done():
            self._current.cancel()
        self._resumed.set()
