"""Tests for persisted session state."""

import json

from jobshell.lib.storage import SessionStorage, history_key, var_key


class TestSessionStorage:
    """Test history and variable persistence."""

    def test_keys(self):
        """Test storage keys of a session."""
        assert history_key("tty-1") == "history@session-tty-1"
        assert var_key("tty-1") == "var@session-tty-1"

    def test_memory_round_trip(self):
        """Test that in-memory storage rehydrates what was saved."""
        storage = SessionStorage()
        storage.save_history("s", ["echo a", "echo b"])
        storage.save_vars("s", {"x": 1, "PWD": "/home/foo", "OLDPWD": "/home"})

        rehydrated = storage.rehydrate("s")

        assert rehydrated.history == ["echo a", "echo b"]
        # Transient variables are not persisted
        assert rehydrated.var == {"x": 1}

    def test_nothing_stored(self):
        """Test rehydrating an unknown session."""
        rehydrated = SessionStorage().rehydrate("unknown")
        assert rehydrated.history is None
        assert rehydrated.var is None

    def test_directory_storage(self, tmp_path):
        """Test that entries are written as JSON files."""
        storage = SessionStorage(tmp_path / "state")
        storage.save_vars("s", {"foo": {"bar": [1, 2]}, "fn": len})

        path = tmp_path / "state" / "var@session-s.json"
        assert path.exists()
        data = json.loads(path.read_text())
        assert data["key"] == "var@session-s"
        # Callables are not persisted
        assert data["value"] == {"foo": {"bar": [1, 2]}}

        assert SessionStorage(tmp_path / "state").rehydrate("s").var == {"foo": {"bar": [1, 2]}}

    def test_malformed_entries_ignored(self, tmp_path):
        """Test that malformed stored values are ignored."""
        storage = SessionStorage(tmp_path)
        storage.set(history_key("s"), {"not": "a list"})
        (tmp_path / f"{var_key('s')}.json").write_text("{not json")

        rehydrated = storage.rehydrate("s")

        assert rehydrated.history is None
        assert rehydrated.var is None

    def test_remove(self, tmp_path):
        """Test removing an entry."""
        storage = SessionStorage(tmp_path)
        storage.set("k", [1])
        storage.remove("k")
        assert storage.get("k") is None
