"""Parser for shell source.

Turns text like ``seq 10 | take 3 && echo "${x:-none}" &`` into the
syntax tree of :mod:`jobshell.shell.nodes`. The grammar is a practical
subset of bash:

- statements separated by ``;``, ``&`` or newlines, with ``#`` comments
- ``!``, ``|``, ``&&`` and ``||`` (the latter two left-associative)
- ``{ ...; }``, ``( ... )``, ``if``, ``while``/``until``, functions,
  ``time``, ``declare`` and ``local``
- single, ``$'...'`` and double quotes, ``$x``, ``${x}``, ``${x:-y}``,
  ``${_/path}`` and ``$( ... )``
- assignments and ``>``, ``>>``, ``>&``, ``&>>``, ``<`` redirects

Input that stops in the middle of a construct raises
:class:`IncompleteParse`, so an interactive front end can ask for more.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Set

from jobshell.shell.errors import IncompleteParse, ParseError
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
    IfBranch,
    IfClause,
    Lit,
    ParamExp,
    Redirect,
    SglQuoted,
    Stmt,
    Subshell,
    TimeClause,
    WhileClause,
    Word,
)

logger = logging.getLogger(__name__)

METACHARS = frozenset(" \t\n;&|<>()")
STOP_WORDS = frozenset({"then", "elif", "else", "fi", "do", "done", "}"})
SPECIAL_PARAMS = "@*#?$!-"

NAME_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
ASSIGN_RE = re.compile(r"([A-Za-z_][A-Za-z0-9_]*)(\+?)=")
RESERVED_RE = re.compile(r"(\{|\}|!|[A-Za-z]+)(?=[\s;&|()<>]|$)")
FUNC_DECL_RE = re.compile(r"([A-Za-z_][\w-]*)[ \t]*\([ \t]*\)")
FUNC_NAME_RE = re.compile(r"[^\s;&|()<>]+")
REDIRECT_RE = re.compile(r"&>>|&>|(\d*)(>>|>&|>|<)")


@dataclass
class ParseResult:
    """Outcome of parsing an interactive buffer.

    Attributes:
        key: One of "complete", "incomplete" or "failed"
        parsed: The parsed file when complete
        error: The error message when failed
    """
    key: str
    parsed: Optional[File] = None
    error: Optional[str] = None


class ShellParser:
    """Recursive-descent parser over a single source string."""

    def __init__(self, src: str):
        """Initialize parser.

        Args:
            src: Shell source, possibly spanning several lines
        """
        self.src = src
        self.pos = 0

    def parse(self) -> File:
        """Parse the whole source.

        Returns:
            Parsed file

        Raises:
            IncompleteParse: If the source ends inside a construct
            ParseError: If the source is malformed
        """
        stmts = self._stmt_list(set())
        self._skip_separators()
        if not self._at_end():
            raise ParseError(f"unexpected '{self._peek()}'")
        return File(stmts=stmts, src=self.src.strip())

    # Scanning helpers

    def _at_end(self) -> bool:
        return self.pos >= len(self.src)

    def _peek(self, offset: int = 0) -> str:
        index = self.pos + offset
        return self.src[index] if index < len(self.src) else ""

    def _slice(self, start: int) -> str:
        return self.src[start:self.pos].strip()

    def _skip_blanks(self) -> None:
        """Skip spaces, tabs, line continuations and comments."""
        while not self._at_end():
            c = self._peek()
            if c in " \t":
                self.pos += 1
            elif c == "\\" and self._peek(1) == "\n":
                self.pos += 2
            elif c == "#":
                end = self.src.find("\n", self.pos)
                self.pos = len(self.src) if end == -1 else end
            else:
                break

    def _skip_separators(self) -> None:
        """Skip blanks and newlines."""
        while True:
            self._skip_blanks()
            if self._peek() == "\n":
                self.pos += 1
            else:
                break

    def _word_at(self) -> Optional[str]:
        """The reserved-word candidate at the current position, if any."""
        match = RESERVED_RE.match(self.src, self.pos)
        return match.group(1) if match else None

    def _expect_word(self, word: str) -> None:
        self._skip_separators()
        if self._word_at() != word:
            if self._at_end():
                raise IncompleteParse(f"expected '{word}'")
            raise ParseError(f"expected '{word}' near '{self.src[self.pos:self.pos + 10]}'")
        self.pos += len(word)

    # Statements

    def _stmt_list(self, stops: Set[str], close_paren: bool = False) -> List[Stmt]:
        stmts: List[Stmt] = []
        while True:
            self._skip_separators()
            if self._at_end():
                return stmts
            if close_paren and self._peek() == ")":
                return stmts
            word = self._word_at()
            if word in stops:
                return stmts
            if word in STOP_WORDS:
                raise ParseError(f"unexpected '{word}'")

            stmt = self._and_or()
            self._skip_blanks()
            c = self._peek()
            if c == "&" and self._peek(1) != "&":
                self.pos += 1
                stmt.background = True
            elif c == ";":
                if self._peek(1) == ";":
                    raise ParseError("unexpected ';;'")
                self.pos += 1
            elif c == "\n":
                self.pos += 1
            elif c == ")" and close_paren:
                pass
            elif not self._at_end():
                raise ParseError(f"unexpected '{c}'")
            stmts.append(stmt)

    def _and_or(self) -> Stmt:
        self._skip_blanks()
        start = self.pos
        left = self._pipeline()
        while True:
            self._skip_blanks()
            op = self.src[self.pos:self.pos + 2]
            if op not in ("&&", "||"):
                return left
            self.pos += 2
            self._skip_separators()
            if self._at_end():
                raise IncompleteParse(f"expected command after '{op}'")
            right = self._pipeline()
            left = Stmt(cmd=BinaryCmd(op=op, x=left, y=right), src=self._slice(start))

    def _pipeline(self) -> Stmt:
        self._skip_blanks()
        start = self.pos
        negated = False
        if self._word_at() == "!":
            self.pos += 1
            negated = True
        stmt = self._command()
        while True:
            self._skip_blanks()
            if self._peek() != "|" or self._peek(1) == "|":
                break
            self.pos += 1
            self._skip_separators()
            if self._at_end():
                raise IncompleteParse("expected command after '|'")
            right = self._command()
            stmt = Stmt(cmd=BinaryCmd(op="|", x=stmt, y=right), src=self._slice(start))
        if negated:
            stmt.negated = True
            stmt.src = self._slice(start)
        return stmt

    def _command(self) -> Stmt:
        self._skip_blanks()
        start = self.pos
        if self._at_end():
            raise IncompleteParse("expected command")

        word = self._word_at()
        c = self._peek()
        if word == "{":
            cmd = self._block()
        elif c == "(":
            if self._peek(1) == "(":
                raise ParseError("arithmetic commands are unsupported")
            cmd = self._subshell()
        elif word == "if":
            cmd = self._if_clause()
        elif word in ("while", "until"):
            cmd = self._while_clause(word)
        elif word == "function":
            cmd = self._function()
        elif word == "time":
            self.pos += len(word)
            self._skip_blanks()
            timed = None
            if not self._at_end() and self._peek() not in ";&\n)":
                timed = self._pipeline()
            return Stmt(cmd=TimeClause(stmt=timed), src=self._slice(start))
        elif word in ("declare", "local"):
            cmd = self._decl_clause(word)
        elif word in STOP_WORDS:
            raise ParseError(f"unexpected '{word}'")
        elif FUNC_DECL_RE.match(self.src, self.pos):
            cmd = self._posix_function()
        else:
            call, redirs = self._simple_command()
            return Stmt(cmd=call, redirs=redirs, src=self._slice(start))

        redirs = self._trailing_redirects()
        return Stmt(cmd=cmd, redirs=redirs, src=self._slice(start))

    def _simple_command(self):
        assigns: List[Assign] = []
        args: List[Word] = []
        redirs: List[Redirect] = []
        while True:
            self._skip_blanks()
            if self._at_end():
                break
            redirect = self._try_redirect()
            if redirect is not None:
                redirs.append(redirect)
                continue
            c = self._peek()
            if c in "\n;&|)":
                break
            if c == "(":
                raise ParseError("unexpected '('")
            if not args:
                match = ASSIGN_RE.match(self.src, self.pos)
                if match:
                    self.pos = match.end()
                    value = self._word(optional=True)
                    assigns.append(Assign(name=match.group(1), value=value, append=bool(match.group(2))))
                    continue
            args.append(self._word())

        if not (assigns or args or redirs):
            raise ParseError(f"unexpected '{self._peek() or 'end of input'}'")
        call = CallExpr(assigns=assigns, args=args) if assigns or args else None
        return call, redirs

    def _try_redirect(self) -> Optional[Redirect]:
        match = REDIRECT_RE.match(self.src, self.pos)
        if not match:
            return None
        op = match.group(0) if match.group(0).startswith("&") else match.group(2)
        n = match.group(1) or None
        self.pos = match.end()
        self._skip_blanks()
        if self._at_end():
            raise IncompleteParse(f"expected target after '{op}'")
        if self._peek() in METACHARS:
            raise ParseError(f"missing target after '{op}'")
        return Redirect(op=op, n=n, word=self._word())

    def _trailing_redirects(self) -> List[Redirect]:
        redirs = []
        while True:
            self._skip_blanks()
            redirect = self._try_redirect()
            if redirect is None:
                return redirs
            redirs.append(redirect)

    # Compound commands

    def _block(self) -> Block:
        self.pos += 1
        stmts = self._stmt_list({"}"})
        self._expect_word("}")
        return Block(stmts=stmts)

    def _subshell(self) -> Subshell:
        self.pos += 1
        stmts = self._stmt_list(set(), close_paren=True)
        if self._at_end():
            raise IncompleteParse("expected ')'")
        if self._peek() != ")":
            raise ParseError(f"unexpected '{self._peek()}'")
        self.pos += 1
        return Subshell(stmts=stmts)

    def _if_clause(self) -> IfClause:
        self.pos += 2
        branches = [self._if_branch()]
        while True:
            self._skip_separators()
            word = self._word_at()
            if self._at_end():
                raise IncompleteParse("expected 'fi'")
            if word == "elif":
                self.pos += 4
                branches.append(self._if_branch())
            elif word == "else":
                self.pos += 4
                then = self._stmt_list({"fi"})
                branches.append(IfBranch(cond=[], then=then))
                self._expect_word("fi")
                break
            elif word == "fi":
                self.pos += 2
                break
            else:
                raise ParseError(f"unexpected '{word or self._peek()}' in if clause")
        return IfClause(branches=branches)

    def _if_branch(self) -> IfBranch:
        cond = self._stmt_list({"then"})
        self._expect_word("then")
        if not cond:
            raise ParseError("empty condition")
        then = self._stmt_list({"elif", "else", "fi"})
        return IfBranch(cond=cond, then=then)

    def _while_clause(self, word: str) -> WhileClause:
        self.pos += len(word)
        cond = self._stmt_list({"do"})
        self._expect_word("do")
        if not cond:
            raise ParseError("empty condition")
        body = self._stmt_list({"done"})
        self._expect_word("done")
        return WhileClause(cond=cond, do=body, until=word == "until")

    def _function(self) -> FuncDecl:
        self.pos += len("function")
        self._skip_blanks()
        match = FUNC_NAME_RE.match(self.src, self.pos)
        if not match:
            if self._at_end():
                raise IncompleteParse("expected function name")
            raise ParseError("expected function name")
        name = match.group(0)
        self.pos = match.end()
        self._skip_blanks()
        parens = re.compile(r"\([ \t]*\)").match(self.src, self.pos)
        if parens:
            self.pos = parens.end()
        return self._function_body(name)

    def _posix_function(self) -> FuncDecl:
        match = FUNC_DECL_RE.match(self.src, self.pos)
        self.pos = match.end()
        return self._function_body(match.group(1))

    def _function_body(self, name: str) -> FuncDecl:
        self._skip_separators()
        if self._at_end():
            raise IncompleteParse("expected function body")
        start = self.pos
        body = self._command()
        if not isinstance(body.cmd, (Block, Subshell, IfClause, WhileClause)):
            raise ParseError(f"{name}: function body must be a compound command")
        return FuncDecl(name=name, body=body, src=self._slice(start))

    def _decl_clause(self, variant: str) -> DeclClause:
        self.pos += len(variant)
        args: List[Assign] = []
        while True:
            self._skip_blanks()
            if self._at_end() or self._peek() in METACHARS:
                break
            match = ASSIGN_RE.match(self.src, self.pos)
            if match:
                self.pos = match.end()
                value = self._word(optional=True)
                args.append(Assign(name=match.group(1), value=value, append=bool(match.group(2))))
                continue
            word = self._word()
            single = word.parts[0] if len(word.parts) == 1 else None
            if isinstance(single, Lit) and NAME_RE.fullmatch(single.value):
                args.append(Assign(name=single.value, naked=True))
            else:
                args.append(Assign(name=None, value=word))
        return DeclClause(variant=variant, args=args)

    # Words

    def _word(self, optional: bool = False, stop: str = "", in_braces: bool = False) -> Optional[Word]:
        start = self.pos
        parts = []
        lit: List[str] = []

        def flush():
            if lit:
                parts.append(Lit(value="".join(lit)))
                lit.clear()

        while not self._at_end():
            c = self._peek()
            if c in stop or (c in METACHARS and not in_braces):
                break
            if c == "\\":
                nxt = self._peek(1)
                if nxt == "":
                    raise IncompleteParse("trailing backslash")
                self.pos += 2
                if nxt != "\n":
                    lit.append(c + nxt)
            elif c == "'":
                flush()
                parts.append(self._single_quoted())
            elif c == '"':
                flush()
                parts.append(self._double_quoted())
            elif c == "$":
                part = self._dollar(in_dquote=False)
                if part is None:
                    lit.append(c)
                    self.pos += 1
                else:
                    flush()
                    parts.append(part)
            elif c == "`":
                raise ParseError("backquote substitution is unsupported, use $( ... )")
            else:
                lit.append(c)
                self.pos += 1
        flush()

        if not parts:
            if optional:
                return None
            raise ParseError(f"expected word near '{self.src[start:start + 10]}'")
        return Word(parts=parts, src=self.src[start:self.pos])

    def _single_quoted(self) -> SglQuoted:
        end = self.src.find("'", self.pos + 1)
        if end == -1:
            raise IncompleteParse("unterminated single quote")
        value = self.src[self.pos + 1:end]
        self.pos = end + 1
        return SglQuoted(value=value)

    def _dollar_single_quoted(self) -> SglQuoted:
        self.pos += 2
        start = self.pos
        while True:
            if self._at_end():
                raise IncompleteParse("unterminated $'")
            c = self._peek()
            if c == "\\":
                self.pos += 2
            elif c == "'":
                break
            else:
                self.pos += 1
        value = self.src[start:self.pos]
        self.pos += 1
        return SglQuoted(value=value, dollar=True)

    def _double_quoted(self) -> DblQuoted:
        self.pos += 1
        parts = []
        lit: List[str] = []

        def flush():
            if lit:
                parts.append(Lit(value="".join(lit)))
                lit.clear()

        while True:
            if self._at_end():
                raise IncompleteParse("unterminated double quote")
            c = self._peek()
            if c == '"':
                self.pos += 1
                break
            if c == "\\":
                nxt = self._peek(1)
                if nxt == "":
                    raise IncompleteParse("unterminated double quote")
                self.pos += 2
                if nxt != "\n":
                    lit.append(c + nxt)
            elif c == "$":
                part = self._dollar(in_dquote=True)
                if part is None:
                    lit.append(c)
                    self.pos += 1
                else:
                    flush()
                    parts.append(part)
            elif c == "`":
                raise ParseError("backquote substitution is unsupported, use $( ... )")
            else:
                lit.append(c)
                self.pos += 1
        flush()
        return DblQuoted(parts=parts)

    def _dollar(self, in_dquote: bool):
        """Parse an expansion at a ``$``, or return None if it is literal."""
        nxt = self._peek(1)
        if nxt == "'" and not in_dquote:
            return self._dollar_single_quoted()
        if nxt == "(":
            if self._peek(2) == "(":
                raise ParseError("arithmetic expansion is unsupported")
            return self._command_substitution()
        if nxt == "{":
            return self._braced_param()
        match = NAME_RE.match(self.src, self.pos + 1)
        if match:
            self.pos = match.end()
            return ParamExp(param=match.group(0), short=True)
        if nxt.isdigit() or (nxt and nxt in SPECIAL_PARAMS):
            self.pos += 2
            return ParamExp(param=nxt, short=True)
        return None

    def _command_substitution(self) -> CmdSubst:
        self.pos += 2
        start = self.pos
        stmts = self._stmt_list(set(), close_paren=True)
        if self._at_end():
            raise IncompleteParse("expected ')'")
        src = self.src[start:self.pos].strip()
        self.pos += 1
        return CmdSubst(stmts=stmts, src=src)

    def _braced_param(self) -> ParamExp:
        self.pos += 2
        if self._at_end():
            raise IncompleteParse("unterminated ${")
        length = excl = False
        if self._peek() == "#" and self._peek(1) not in ("}", ""):
            length = True
            self.pos += 1
        elif self._peek() == "!":
            excl = True
            self.pos += 1

        match = NAME_RE.match(self.src, self.pos) or re.compile(r"\d+").match(self.src, self.pos)
        if match:
            name = match.group(0)
            self.pos = match.end()
        elif self._peek() and self._peek() in SPECIAL_PARAMS:
            name = self._peek()
            self.pos += 1
        elif self._at_end():
            raise IncompleteParse("unterminated ${")
        else:
            raise ParseError("bad substitution")

        node = ParamExp(param=name, length=length, excl=excl)
        c = self._peek()
        if c == "}":
            self.pos += 1
        elif c == "/":
            end = self.src.find("}", self.pos)
            if end == -1:
                raise IncompleteParse("unterminated ${")
            node.path = f"{name}{self.src[self.pos:end]}"
            self.pos = end + 1
        elif c and c in ":-+=?":
            op = self.src[self.pos:self.pos + 2] if c == ":" and self._peek(1) in ("-", "+", "=", "?") else c
            self.pos += len(op)
            node.exp_op = op
            node.exp_word = self._word(optional=True, stop="}", in_braces=True)
            if self._at_end():
                raise IncompleteParse("unterminated ${")
            self.pos += 1
        elif not c:
            raise IncompleteParse("unterminated ${")
        else:
            raise ParseError("bad substitution")
        return node


def parse(src: str) -> File:
    """Parse shell source.

    Args:
        src: Shell source

    Returns:
        Parsed file

    Raises:
        IncompleteParse: If more input is needed
        ParseError: If the source is malformed
    """
    return ShellParser(src).parse()


def try_parse_buffer(lines: List[str]) -> ParseResult:
    """Attempt to parse buffered interactive lines.

    Args:
        lines: Lines received so far for the current command

    Returns:
        A complete, incomplete or failed result
    """
    src = "\n".join(lines)
    try:
        return ParseResult(key="complete", parsed=parse(src))
    except IncompleteParse:
        return ParseResult(key="incomplete")
    except ParseError as e:
        logger.debug(f"Failed to parse {src!r}: {e}")
        return ParseResult(key="failed", error=str(e))
