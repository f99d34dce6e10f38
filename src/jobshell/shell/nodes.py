"""Syntax tree of parsed shell source.

Nodes are plain dataclasses. Evaluation records each node's exit code on
the node itself, so a tree is cloned (see :func:`wrap_in_file`) whenever
it is about to run in a new process.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union


@dataclass
class Meta:
    """Execution context shared by the nodes a process evaluates.

    Attributes:
        session_key: Owning session
        pid: Process evaluating the nodes
        ppid: Parent process
        pgid: Process group
        fd: File descriptor table, mapping descriptors to device keys
        stack: Names of the shell functions being called
        background: Whether the process runs as a background job
        verbose: Log exit codes of spawned processes
    """
    session_key: str
    pid: int = 0
    ppid: int = 0
    pgid: int = 0
    fd: Dict[int, str] = field(default_factory=dict)
    stack: List[str] = field(default_factory=list)
    background: bool = False
    verbose: bool = False

    def fork(self, **changes) -> Meta:
        """Copy with independent ``fd`` and ``stack``, applying ``changes``."""
        forked = copy.copy(self)
        forked.fd = dict(self.fd)
        forked.stack = list(self.stack)
        for key, value in changes.items():
            setattr(forked, key, value)
        return forked


@dataclass
class Node:
    exit_code: Optional[int] = field(default=None, init=False, compare=False)


# Word parts

@dataclass
class Lit(Node):
    value: str = ""


@dataclass
class SglQuoted(Node):
    value: str = ""
    dollar: bool = False


@dataclass
class DblQuoted(Node):
    parts: List["WordPart"] = field(default_factory=list)


@dataclass
class ParamExp(Node):
    """Parameter expansion, short (``$x``) or braced (``${x:-y}``)."""
    param: str = ""
    short: bool = False
    exp_op: Optional[str] = None
    exp_word: Optional["Word"] = None
    path: Optional[str] = None
    length: bool = False
    excl: bool = False


@dataclass
class CmdSubst(Node):
    stmts: List["Stmt"] = field(default_factory=list)
    src: str = ""


WordPart = Union[Lit, SglQuoted, DblQuoted, ParamExp, CmdSubst]


@dataclass
class Word(Node):
    parts: List[WordPart] = field(default_factory=list)
    src: str = ""


# Commands

@dataclass
class Assign(Node):
    """``name=value``, ``name+=value`` or a bare name in ``declare``/``local``.

    ``name`` is None for declaration operands that are not names, e.g. the
    ``-f`` of ``declare -f``; ``value`` then holds the word.
    """
    name: Optional[str] = None
    value: Optional[Word] = None
    append: bool = False
    naked: bool = False


@dataclass
class Redirect(Node):
    op: str = ">"
    n: Optional[str] = None
    word: Optional[Word] = None


@dataclass
class CallExpr(Node):
    assigns: List[Assign] = field(default_factory=list)
    args: List[Word] = field(default_factory=list)


@dataclass
class Block(Node):
    stmts: List["Stmt"] = field(default_factory=list)


@dataclass
class Subshell(Node):
    stmts: List["Stmt"] = field(default_factory=list)


@dataclass
class BinaryCmd(Node):
    """``x op y`` for op in ``&&``, ``||`` and ``|``; chains nest to the left."""
    op: str = "&&"
    x: Optional["Stmt"] = None
    y: Optional["Stmt"] = None


@dataclass
class IfBranch:
    """A branch of an if clause; ``cond`` is empty for ``else``."""
    cond: List["Stmt"] = field(default_factory=list)
    then: List["Stmt"] = field(default_factory=list)


@dataclass
class IfClause(Node):
    branches: List[IfBranch] = field(default_factory=list)


@dataclass
class WhileClause(Node):
    cond: List["Stmt"] = field(default_factory=list)
    do: List["Stmt"] = field(default_factory=list)
    until: bool = False


@dataclass
class FuncDecl(Node):
    name: str = ""
    body: Optional["Stmt"] = None
    src: str = ""


@dataclass
class DeclClause(Node):
    variant: str = "declare"
    args: List[Assign] = field(default_factory=list)


@dataclass
class TimeClause(Node):
    stmt: Optional["Stmt"] = None


Command = Union[CallExpr, Block, Subshell, BinaryCmd, IfClause, WhileClause, FuncDecl, DeclClause, TimeClause]


@dataclass
class Stmt(Node):
    cmd: Optional[Command] = None
    redirs: List[Redirect] = field(default_factory=list)
    negated: bool = False
    background: bool = False
    src: str = ""


@dataclass
class File(Node):
    stmts: List[Stmt] = field(default_factory=list)
    meta: Optional[Meta] = None
    src: str = ""


@dataclass
class NamedFunction:
    """A shell function stored in a session's function table."""
    key: str
    file: File
    src: str


def clone(node):
    """Deep copy of a syntax tree."""
    return copy.deepcopy(node)


def wrap_in_file(
    node: Union[File, Stmt, Block, Subshell, CmdSubst],
    meta: Meta,
    ppid: Optional[int] = None,
    pgid: Optional[int] = None,
    background: Optional[bool] = None,
) -> File:
    """Clone ``node`` into a runnable :class:`File` with its own meta.

    Args:
        node: Statement or statement container to run
        meta: Meta of the spawning process
        ppid: Parent pid, defaulting to the spawning process
        pgid: Process group, defaulting to the spawning process's group
        background: Whether the new process is a background job

    Returns:
        A fresh file whose meta is independent of ``meta``
    """
    cloned = clone(node)
    if isinstance(cloned, File):
        stmts, src = cloned.stmts, cloned.src
    elif isinstance(cloned, Stmt):
        stmts, src = [cloned], cloned.src
    else:
        stmts, src = cloned.stmts, getattr(cloned, "src", "") or "; ".join(s.src for s in cloned.stmts)
    return File(
        stmts=stmts,
        src=src,
        meta=meta.fork(
            ppid=meta.pid if ppid is None else ppid,
            pgid=meta.pgid if pgid is None else pgid,
            background=meta.background if background is None else background,
        ),
    )
