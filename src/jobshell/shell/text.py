"""Terminal text helpers: colours, links and columns."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from jobshell.lib.values import parse_js_arg


class Ansi:
    """ANSI escape sequences."""
    BLACK = "\x1b[30m"
    BLUE = "\x1b[1;34m"
    BOLD = "\x1b[1m"
    BOLD_RESET = "\x1b[22m"
    BRIGHT_GREEN = "\x1b[92m"
    BRIGHT_YELLOW = "\x1b[93m"
    CYAN = "\x1b[96m"
    DARK_GREY = "\x1b[90m"
    GREEN = "\x1b[32m"
    RED = "\x1b[31;1m"
    RESET = "\x1b[0m"
    UNDERLINE = "\x1b[4m"
    WHITE = "\x1b[37m"
    YELLOW = "\x1b[33m"


_ANSI_RE = re.compile(
    r"[\x1b\x9b][\[\]()#;?]*"
    r"(?:(?:(?:(?:;[-a-zA-Z\d/#&.:=?%@~_]+)*"
    r"|[a-zA-Z\d]+(?:;[-a-zA-Z\d/#&.:=?%@~_]*)*)?\x07)"
    r"|(?:(?:\d{1,4}(?:;\d{0,4})*)?[\dA-PR-TZcf-nq-uy=><~]))"
)

# Group 1 is empty or the character before the link, group 2 the label
# and group 3 the value.
_MD_LINK_RE = re.compile(r"(^|[^\x1b])\[ ([^()]+?) \]\((.*?)\)")


def strip_ansi(text: str) -> str:
    """Remove ANSI escape sequences."""
    return _ANSI_RE.sub("", text)


def format_link(link_text: str) -> str:
    """Render ``link_text`` as a clickable bracketed label."""
    return f"{Ansi.RESET}[{Ansi.BOLD}{Ansi.WHITE}{link_text}{Ansi.RESET}]"


def format_message(msg: str, level: str) -> str:
    """Colour a message for its level ("info" or "error")."""
    colour = Ansi.CYAN if level == "info" else Ansi.RED
    return f"{colour}{msg}{Ansi.RESET}"


@dataclass
class TtyLinkCtxt:
    """A clickable region of a line written to the terminal.

    Attributes:
        line_text: The line with ANSI codes stripped
        link_text: Label inside the brackets, ANSI codes stripped
        link_start_index: Index one after the opening bracket
        callback: Invoked with the clicked line number
    """
    line_text: str
    link_text: str
    link_start_index: int
    callback: Callable[[int], Any]


@dataclass
class ParsedLinks:
    """Result of :func:`parse_tty_markdown_links`."""
    tty_text: str
    tty_text_key: str
    link_ctxts_factory: Optional[Callable[[Callable[[Any], None]], List[TtyLinkCtxt]]]


def parse_tty_markdown_links(text: str, default_value: Any = None) -> ParsedLinks:
    """Replace each ``[ label ](value)`` by a rendered ``[label]`` link.

    A link ``[ foo ]()`` has value ``"foo"``, ``[ foo ](-)`` has the
    default value, and otherwise the value is parsed from the parentheses.

    Args:
        text: A single line possibly containing markdown links
        default_value: Value of links whose value is ``-``

    Returns:
        The rendered line, its ANSI-stripped key, and (if there are links)
        a factory building link contexts that pass the clicked value to
        a ``resolve`` callback
    """
    matches = list(_MD_LINK_RE.finditer(text))
    boundaries: List[int] = []
    for match in matches:
        boundaries.extend([match.start() + len(match.group(1)), match.end()])
    added_zero = 0
    if not boundaries or boundaries[0] != 0:
        boundaries.insert(0, 0)
        added_zero = 1

    parts = []
    for i, start in enumerate(boundaries):
        end = boundaries[i + 1] if i + 1 < len(boundaries) else len(text)
        part = text[start:end]
        if matches and i % 2 == added_zero:
            parts.append(format_link(part[1:part.index("(") - 1]))
        else:
            parts.append(f"{Ansi.WHITE}{part}{Ansi.RESET}")

    tty_text = "".join(parts)
    tty_text_key = strip_ansi(tty_text)

    if not matches:
        return ParsedLinks(tty_text, tty_text_key, None)

    def factory(resolve: Callable[[Any], None]) -> List[TtyLinkCtxt]:
        ctxts = []
        for i, match in enumerate(matches):
            label, raw = match.group(2), match.group(3)

            def callback(line_number: int, label: str = label, raw: str = raw) -> None:
                if raw == "":
                    value = parse_js_arg(label)
                elif raw == "-":
                    value = default_value
                else:
                    value = parse_js_arg(raw)
                resolve(value)

            ctxts.append(TtyLinkCtxt(
                line_text=tty_text_key,
                link_text=strip_ansi(label),
                link_start_index=1 + len(strip_ansi("".join(parts[:2 * i + added_zero]))),
                callback=callback,
            ))
        return ctxts

    return ParsedLinks(tty_text, tty_text_key, factory)


def format_columns(items: List[str], width: int = 80, gap: int = 2) -> List[str]:
    """Lay out items in columns, filling down each column first."""
    if not items:
        return []
    col_width = max(len(strip_ansi(x)) for x in items) + gap
    num_cols = max(1, width // col_width)
    num_rows = -(-len(items) // num_cols)
    lines = []
    for row in range(num_rows):
        cells = [items[i] for i in range(row, len(items), num_rows)]
        padded = [
            cell + " " * (col_width - len(strip_ansi(cell)))
            for cell in cells[:-1]
        ] + cells[-1:]
        lines.append("".join(padded))
    return lines
