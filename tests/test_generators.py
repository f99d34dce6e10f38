"""Tests for the library generators wrapped by the default profile."""

import logging

import pytest


class TestSeq:
    """Test seq."""

    async def test_last(self, profiled):
        """Test counting from one."""
        assert await profiled.run("seq 3") == ["1", "2", "3"]

    async def test_first_last(self, profiled):
        """Test an explicit range."""
        assert await profiled.run("seq 2 4") == ["2", "3", "4"]

    async def test_chunks(self, profiled):
        """Test ranges spanning several chunks."""
        assert await profiled.run("seq 2500 | sponge | map 'len(x)'") == ["2500"]

    @pytest.mark.parametrize("line", ["seq", "seq 1 2 3", "seq a"])
    async def test_bad_arguments(self, profiled, line):
        """Test usage errors."""
        await profiled.run(line)
        assert profiled.exit_code == 1

    async def test_bad_integer_message(self, profiled):
        """Test reporting a non-integer argument."""
        lines = await profiled.run("seq a")
        assert any("expected an integer" in line for line in lines)


class TestTake:
    """Test take."""

    async def test_take(self, profiled):
        """Test forwarding a prefix of the input."""
        assert await profiled.run("seq 3 | take 2") == ["1", "2"]
        assert profiled.exit_code == 0

    async def test_too_few(self, profiled):
        """Test exiting 1 when the input ends early."""
        await profiled.run("seq 2 | take 3")
        assert profiled.exit_code == 1

    async def test_one_per_iteration(self, profiled):
        """Test consuming one value per loop iteration."""
        assert await profiled.run("seq 3 | while take 1 >x; do echo $x; done") == ["1", "2", "3"]


class TestTransforms:
    """Test map, filter and reduce."""

    async def test_filter_map(self, profiled):
        """Test chaining filter and map."""
        assert await profiled.run("seq 5 | filter 'x % 2' | map 'x * 10'") == ["10", "30", "50"]

    async def test_lambda(self, profiled):
        """Test a lambda as the expression."""
        assert await profiled.run("seq 2 | map 'lambda x: x + 1'") == ["2", "3"]

    async def test_syntax_error(self, profiled):
        """Test an invalid expression."""
        await profiled.run("seq 2 | map 'x +'")
        assert profiled.exit_code == 1

    async def test_missing_expression(self, profiled):
        """Test usage errors."""
        await profiled.run("seq 2 | filter")
        assert profiled.exit_code == 1

    async def test_reduce(self, profiled):
        """Test reducing without an initial value."""
        assert await profiled.run("seq 4 | reduce 'acc + x'") == ["10"]

    async def test_reduce_initial(self, profiled):
        """Test reducing empty input with an initial value."""
        assert await profiled.run("seq 0 | reduce 'acc + x' 100") == ["100"]

    async def test_reduce_empty(self, profiled):
        """Test reducing empty input without an initial value."""
        await profiled.run("seq 0 | reduce 'acc + x'")
        assert profiled.exit_code == 1


class TestCollect:
    """Test sponge and split."""

    async def test_sponge(self, profiled):
        """Test collecting inputs into a list."""
        assert await profiled.run("seq 3 | sponge") == ["[1,2,3]"]
        assert profiled.session.var["_"] == [1, 2, 3]

    async def test_split_separator(self, profiled):
        """Test splitting on a separator."""
        assert await profiled.run("echo a,b | split ,") == ["a", "b"]

    async def test_split_characters(self, profiled):
        """Test splitting into characters."""
        assert await profiled.run("echo ab | split") == ["a", "b"]

    async def test_split_list(self, profiled):
        """Test splitting a list into items."""
        assert await profiled.run("echo -a x y | split") == ["x", "y"]

    async def test_split_regex(self, profiled):
        """Test splitting by a regular expression."""
        assert await profiled.run(r"echo a1b22c | split '/\d+/'") == ["a", "b", "c"]


class TestPollAndLog:
    """Test poll and log."""

    async def test_poll(self, profiled):
        """Test polling until the consumer stops."""
        assert await profiled.run("poll 0.01 | take 3") == ["1", "2", "3"]

    async def test_log(self, profiled, caplog):
        """Test logging arguments and inputs."""
        caplog.set_level(logging.INFO, logger="jobshell.shell.generators")
        await profiled.run("log start")
        await profiled.run("seq 2 | log")
        messages = [r.getMessage() for r in caplog.records if r.name == "jobshell.shell.generators"]
        assert messages == ["start", "1", "2"]
