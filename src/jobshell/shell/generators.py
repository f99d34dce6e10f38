"""Library generators available under ``/lib/util``.

Each is run via ``run /lib/util/<name> [args...]`` and receives the process
context ``ct``, the process API and the arguments. The default profile
wraps each of them in a shell function of the same name, e.g.

    seq 10 | map 'x * 2' | filter 'x > 5' | take 2
"""

from __future__ import annotations

import functools
import logging
import re
from typing import Any, Callable, Dict, List

from jobshell.lib.values import to_text
from jobshell.shell.devices import EOF, DataChunk
from jobshell.shell.errors import ShError

logger = logging.getLogger(__name__)

SEQ_CHUNK_SIZE = 1000


def compile_selector(source: Any, params: str = "x") -> Callable:
    """Compile ``'x * 2'`` or ``'lambda x: x * 2'`` into a function.

    Raises:
        ShError: If the source is not a valid expression
    """
    if callable(source):
        return source
    source = to_text(source).strip()
    code = source if source.startswith("lambda") else f"lambda {params}: ({source})"
    try:
        return eval(code, {"__builtins__": __builtins__}, {})
    except SyntaxError as e:
        raise ShError(f"{source}: {e.msg}", 1) from e


def _int_arg(value: Any, name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ShError(f"{name}: expected an integer, got {value!r}", 1) from None


async def seq(ct, api, args):
    """``seq last`` or ``seq first last``: output consecutive integers."""
    if not args or len(args) > 2:
        raise ShError("usage: `seq last` or `seq first last`", 1)
    first, last = (1, _int_arg(args[0], "seq")) if len(args) == 1 else (
        _int_arg(args[0], "seq"),
        _int_arg(args[1], "seq"),
    )
    for start in range(first, last + 1, SEQ_CHUNK_SIZE):
        yield DataChunk(list(range(start, min(start + SEQ_CHUNK_SIZE, last + 1))))


async def take(ct, api, args):
    """Forward the first ``n`` inputs; exit 1 if fewer arrived.

    Reads single values so that e.g. ``seq 5 | while take 1 >x; do ...``
    consumes exactly one value per iteration.
    """
    remaining = _int_arg(args[0], "take") if args else None
    while remaining is None or remaining > 0:
        datum = await api.read()
        if datum is EOF:
            break
        yield datum
        if remaining is not None:
            remaining -= 1
    if remaining:
        raise ShError("", 1)


async def sponge(ct, api, args):
    """Collect every input into a single list."""
    outputs: List[Any] = []
    while (datum := await api.read(True)) is not EOF:
        outputs.extend(datum.items if isinstance(datum, DataChunk) else [datum])
    yield outputs


async def split(ct, api, args):
    """Split lists into items, and strings by a separator (default: characters).

    A separator of the form ``/regex/`` splits by a regular expression.
    """
    sep = to_text(args[0]) if args else ""
    while (datum := await api.read()) is not EOF:
        if isinstance(datum, (list, tuple, set, frozenset)):
            yield DataChunk(list(datum))
        elif isinstance(datum, str):
            if len(sep) > 1 and sep.startswith("/") and sep.endswith("/"):
                yield DataChunk(re.split(sep[1:-1], datum))
            else:
                yield DataChunk(datum.split(sep) if sep else list(datum))


async def poll(ct, api, args):
    """Output 1, 2, 3, ... every ``args[0]`` seconds."""
    async for count in api.poll(args):
        yield count


async def log(ct, api, args):
    """Log the arguments, then every input."""
    for arg in args:
        logger.info(to_text(arg))
    if api.is_tty_at(0):
        return
    while (datum := await api.read(True)) is not EOF:
        items = datum.items if isinstance(datum, DataChunk) else [datum]
        for item in items:
            logger.info(to_text(item))


async def map_(ct, api, args):
    """Apply an expression in ``x`` to every input."""
    if not args:
        raise ShError("usage: `map {expression}` e.g. `map 'x * 2'`", 1)
    func = compile_selector(args[0])
    while (datum := await api.read(True)) is not EOF:
        if isinstance(datum, DataChunk):
            yield DataChunk([func(x) for x in datum.items])
        else:
            yield func(datum)


async def filter_(ct, api, args):
    """Forward inputs for which an expression in ``x`` is truthy."""
    if not args:
        raise ShError("usage: `filter {expression}` e.g. `filter 'x % 2'`", 1)
    func = compile_selector(args[0])
    while (datum := await api.read(True)) is not EOF:
        if isinstance(datum, DataChunk):
            yield DataChunk([x for x in datum.items if func(x)])
        elif func(datum):
            yield datum


async def reduce_(ct, api, args):
    """Reduce every input with an expression in ``acc`` and ``x``."""
    if not args:
        raise ShError("usage: `reduce {expression} [initial]` e.g. `reduce 'acc + x' 0`", 1)
    func = compile_selector(args[0], "acc, x")
    inputs: List[Any] = []
    while (datum := await api.read(True)) is not EOF:
        inputs.extend(datum.items if isinstance(datum, DataChunk) else [datum])
    if len(args) > 1:
        yield functools.reduce(func, inputs, api.parse_js_arg(args[1]))
    elif inputs:
        yield functools.reduce(func, inputs)
    else:
        raise ShError("reduce: no inputs and no initial value", 1)


UTIL_GENERATORS: Dict[str, Callable] = {
    "seq": seq,
    "take": take,
    "sponge": sponge,
    "split": split,
    "poll": poll,
    "log": log,
    "map": map_,
    "filter": filter_,
    "reduce": reduce_,
}
