"""Messages exchanged between the shell and its terminal front end.

Inbound messages (front end to shell) are validated through a
discriminated union on ``key``; outbound messages are plain models. Field
names are snake_case in Python and camelCase on the wire.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any, Callable, Dict, List, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


class Message(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


# Inbound

class ReqHistoryLine(Message):
    key: Literal["req-history-line"] = "req-history-line"
    history_index: int


class SendLine(Message):
    key: Literal["send-line"] = "send-line"
    line: str


class SendKillSig(Message):
    key: Literal["send-kill-sig"] = "send-kill-sig"


InboundMessage = Annotated[
    Union[ReqHistoryLine, SendLine, SendKillSig],
    Field(discriminator="key"),
]

_inbound_adapter = TypeAdapter(InboundMessage)


def parse_inbound(data: Union[Dict[str, Any], str, bytes]) -> Union[ReqHistoryLine, SendLine, SendKillSig]:
    """Validate an inbound message given as a mapping or JSON text.

    Raises:
        pydantic.ValidationError: If the message is malformed
    """
    if isinstance(data, (str, bytes)):
        return _inbound_adapter.validate_json(data)
    return _inbound_adapter.validate_python(data)


# Outbound

class SendHistoryLine(Message):
    key: Literal["send-history-line"] = "send-history-line"
    line: str
    next_index: int


class SendXtermPrompt(Message):
    key: Literal["send-xterm-prompt"] = "send-xterm-prompt"
    prompt: str


class ErrorMessage(Message):
    key: Literal["error"] = "error"
    msg: str


class InfoMessage(Message):
    key: Literal["info"] = "info"
    msg: str


class ExternalMessage(Message):
    """Lifecycle notification, e.g. ``{"key": "process-leader", "act": "started"}``."""
    key: Literal["external"] = "external"
    msg: Dict[str, Any]


class TtyReceivedLine(Message):
    key: Literal["tty-received-line"] = "tty-received-line"


class OutputLine(Message):
    """A line of output to display."""
    key: Literal["line"] = "line"
    line: str


class ShellIo:
    """Two-way message hub between a shell and its front end.

    The front end subscribes with :meth:`read` and sends with
    :meth:`write`; the shell subscribes with :meth:`handle_writes` and
    replies with :meth:`write_to_readers`.
    """

    def __init__(self):
        self._readers: List[Callable[[Message], Any]] = []
        self._writers: List[Callable[[Any], Any]] = []

    def read(self, listener: Callable[[Message], Any]) -> Callable[[], None]:
        """Subscribe to outbound messages; returns an unsubscribe function."""
        self._readers.append(listener)
        return lambda: self._readers.remove(listener) if listener in self._readers else None

    def handle_writes(self, listener: Callable[[Any], Any]) -> Callable[[], None]:
        """Subscribe to inbound messages; returns an unsubscribe function."""
        self._writers.append(listener)
        return lambda: self._writers.remove(listener) if listener in self._writers else None

    def write(self, msg: Any) -> None:
        """Send an inbound message to the shell."""
        if not isinstance(msg, BaseModel):
            msg = parse_inbound(msg)
        for listener in list(self._writers):
            listener(msg)

    def write_to_readers(self, msg: Message) -> None:
        """Send an outbound message to the front end."""
        for listener in list(self._readers):
            listener(msg)

    def dispose(self) -> None:
        self._readers.clear()
        self._writers.clear()
