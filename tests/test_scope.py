"""Tests for path resolution and value conversions."""

import pytest

from jobshell.lib.values import (
    add_values,
    keys_deep,
    parse_js_arg,
    stringify,
    tags_to_meta,
    to_text,
    truncate_one_line,
)
from jobshell.shell.errors import PathNotFoundError, ShError
from jobshell.shell.process_api import ProcessApi
from jobshell.shell.scope import (
    ProcessContext,
    compute_normalized_parts,
    delete_path,
    resolve_normalized,
    resolve_path,
    set_path,
)


class Point:
    path_members = ("x", "scaled")

    def __init__(self):
        self.x = 1
        self._hidden = 2
        self.y = 3

    def scaled(self, factor, offset=0):
        return self.x * factor + offset


@pytest.fixture
def tree():
    return {
        "home": {"foo": [10, {"bar": "baz"}], "p": Point()},
        "etc": {},
    }


class TestNormalization:
    """Test path normalization."""

    @pytest.mark.parametrize("path,pwd,expected", [
        ("/home/foo", "/", ["home", "foo"]),
        ("foo", "/home", ["home", "foo"]),
        ("../etc", "/home", ["etc"]),
        ("./a//b/.", "/", ["a", "b"]),
        ("../../..", "/home", []),
    ])
    def test_parts(self, path, pwd, expected):
        """Test absolute and relative paths."""
        assert compute_normalized_parts(path, pwd) == expected


class TestResolution:
    """Test walking the tree."""

    def test_mapping_and_index(self, tree):
        """Test keys and list indexes."""
        assert resolve_path("/home/foo/1/bar", tree, "/") == "baz"
        assert resolve_path("foo/0", tree, "/home") == 10

    def test_attributes(self, tree):
        """Test that public attributes resolve and private ones do not."""
        assert resolve_path("/home/p/x", tree, "/") == 1
        with pytest.raises(PathNotFoundError):
            resolve_path("/home/p/_hidden", tree, "/")

    def test_unlisted_attributes(self, tree):
        """Test that only declared members resolve."""
        for segment in ("y", "__class__", "__init__"):
            with pytest.raises(PathNotFoundError):
                resolve_normalized(["home", "p", segment], tree)

    def test_opaque_objects(self):
        """Test that objects without declared members expose nothing."""
        with pytest.raises(PathNotFoundError):
            resolve_path("/o/__class__", {"o": object()}, "/")
        with pytest.raises(PathNotFoundError):
            resolve_path("/s/upper()", {"s": "abc"}, "/")

    def test_call(self, tree):
        """Test calling a member with JSON arguments."""
        assert resolve_normalized(["home", "p", "scaled(3, 1)"], tree) == 4

    def test_call_bad_arguments(self, tree):
        """Test that call arguments must be JSON."""
        with pytest.raises(ShError):
            resolve_normalized(["home", "p", "scaled(three)"], tree)

    def test_missing(self, tree):
        """Test a missing path."""
        with pytest.raises(PathNotFoundError) as info:
            resolve_path("/home/nope", tree, "/")
        assert info.value.path == "/home/nope"

    def test_index_out_of_range(self, tree):
        """Test an out-of-range index."""
        with pytest.raises(PathNotFoundError):
            resolve_path("/home/foo/5", tree, "/")


class TestMutation:
    """Test setting and deleting."""

    def test_set_mapping(self, tree):
        """Test setting a key."""
        set_path(["home", "x"], tree, 3)
        assert tree["home"]["x"] == 3

    def test_set_list(self, tree):
        """Test replacing and appending list items."""
        set_path(["home", "foo", "0"], tree, 11)
        set_path(["home", "foo", "2"], tree, 12)
        assert tree["home"]["foo"][0] == 11
        assert tree["home"]["foo"][2] == 12
        with pytest.raises(ShError):
            set_path(["home", "foo", "9"], tree, 0)

    def test_set_missing_parent(self, tree):
        """Test that the parent must exist."""
        with pytest.raises(ShError):
            set_path(["home", "a", "b"], tree, 1)
        with pytest.raises(ShError):
            set_path([], tree, 1)

    def test_delete(self, tree):
        """Test deleting entries."""
        assert delete_path(["home", "foo", "0"], tree)
        assert tree["home"]["foo"] == [{"bar": "baz"}]
        assert delete_path(["home", "foo"], tree)
        assert not delete_path(["home", "foo"], tree)
        assert not delete_path(["nope", "x"], tree)


class TestProcessContext:
    """Test the process root."""

    def test_root(self):
        """Test the root branches and the last-value shortcut."""
        ctx = ProcessContext(home={"x": 1}, etc={}, lib={}, args=["a"])
        assert set(ctx.root) == {"home", "etc", "lib", "api", "args"}
        assert ctx.resolve("args/0") == "a"
        ctx.home["_"] = {"y": 2}
        assert ctx.resolve("/_/y") == 2
        assert ctx.resolve("x", "/home") == 1

    def test_api_members(self):
        """Test that the process API exposes only its declared members."""
        ctx = ProcessContext(home={}, etc={}, lib={}, api=ProcessApi(None, None))
        assert len(ctx.resolve("/api/get_uid()")) == 11
        assert ctx.resolve("/api/parse_js_arg(\"[1]\")") == [1]
        for path in ("/api/read", "/api/registry", "/api/kill()"):
            with pytest.raises(PathNotFoundError):
                ctx.resolve(path)


class TestValues:
    """Test value conversions."""

    @pytest.mark.parametrize("text,expected", [
        ("42", 42),
        ("true", True),
        ('"foo"', "foo"),
        ("foo", "foo"),
        ("[1, 2]", [1, 2]),
        ("{foo: bar}", {"foo": "bar"}),
        ("{a,b", "{a,b"),
    ])
    def test_parse_js_arg(self, text, expected):
        """Test interpreting words as values."""
        assert parse_js_arg(text) == expected

    def test_stringify(self):
        """Test compact rendering."""
        assert stringify({"a": [1, 2]}) == '{"a":[1,2]}'
        assert stringify("foo") == '"foo"'
        assert to_text("foo") == "foo"
        assert to_text([1]) == "[1]"

    def test_add_values(self):
        """Test appending values."""
        assert add_values(1, 2) == 3
        assert add_values("a", "b") == "ab"
        assert add_values([1], 2) == [1, 2]
        assert add_values({"a": 1}, {"b": 2}) == {"a": 1, "b": 2}
        assert add_values(True, 1) == "true1"

    def test_add_values_copies(self):
        """Test that operands are left unchanged."""
        left, items = {"a": 1}, [1]
        assert add_values(left, {"b": 2}) is not left
        assert add_values(items, 2) is not items
        assert left == {"a": 1}
        assert items == [1]

    def test_tags(self):
        """Test tag parsing."""
        assert tags_to_meta(["always", "x=3"]) == {"always": True, "x": 3}

    def test_keys_deep(self):
        """Test nested key listing."""
        assert keys_deep({"a": {"b": [1]}}) == ["a", "a/b", "a/b/0"]

    def test_truncate(self):
        """Test one-line truncation."""
        assert truncate_one_line("abc\ndef") == "abc"
        assert truncate_one_line("abcdef", 3) == "abc…"
