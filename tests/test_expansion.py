"""Tests for word expansion helpers."""

import pytest

from jobshell.shell.expansion import (
    Expanded,
    brace_expand,
    interpret_escape_sequences,
    literal,
    normalize_whitespace,
)


class TestBraceExpansion:
    """Test brace expansion."""

    @pytest.mark.parametrize("text,expected", [
        ("a{b,c}d", ["abd", "acd"]),
        ("{1..3}", ["1", "2", "3"]),
        ("{3..1}", ["3", "2", "1"]),
        ("{1..9..4}", ["1", "5", "9"]),
        ("{08..10}", ["08", "09", "10"]),
        ("{a..c}", ["a", "b", "c"]),
        ("{a,b{1,2}}", ["a", "b1", "b2"]),
        ("{x,y}{1,2}", ["x1", "x2", "y1", "y2"]),
    ])
    def test_expands(self, text, expected):
        """Test lists, ranges and nesting."""
        assert brace_expand(text) == expected

    @pytest.mark.parametrize("text", ["{a}", "{}", "{1..x}", "{1..5..0}", "a{b"])
    def test_left_alone(self, text):
        """Test braces that are not expandable."""
        assert brace_expand(text) == [text]

    def test_escaped_braces(self):
        """Test that escaped braces are literal."""
        assert literal("\\{a,b\\}") == ["{a,b}"]


class TestLiteral:
    """Test literal word parts."""

    def test_unquoted(self):
        """Test unescaping and brace expansion outside quotes."""
        assert literal(r"f{o,i}\;") == ["fo;", "fi;"]

    def test_double_quoted(self):
        """Test that double quotes suppress brace expansion."""
        assert literal('a\\"b{1,2}', in_dquote=True) == ['a"b{1,2}']


class TestEscapes:
    """Test $'...' escape sequences."""

    def test_known_escapes(self):
        """Test named and hexadecimal escapes."""
        assert interpret_escape_sequences("a\\tb\\nc\\x41") == "a\tb\ncA"

    def test_unknown_escape_is_kept(self):
        """Test that unknown escapes keep their backslash."""
        assert interpret_escape_sequences("\\q") == "\\q"


class TestWhitespace:
    """Test whitespace normalization."""

    def test_trim(self):
        """Test splitting with trimming."""
        assert normalize_whitespace("  a \t b\n") == ["a", "b"]

    def test_blank(self):
        """Test blank input."""
        assert normalize_whitespace("  \n") == []

    def test_keep_edges(self):
        """Test that untrimmed splits mark leading and trailing space."""
        assert normalize_whitespace("  a  b ", trim=False) == [" a", "b "]
        assert normalize_whitespace("a b", trim=False) == ["a", "b"]


class TestExpanded:
    """Test expansion results."""

    def test_of_string(self):
        """Test a single string."""
        expanded = Expanded.of("foo")
        assert expanded.values == ["foo"]
        assert expanded.value == "foo"

    def test_of_values(self):
        """Test structured values joined as text."""
        expanded = Expanded.of(["a", 1])
        assert expanded.values == ["a", 1]
        assert expanded.value == "a 1"
