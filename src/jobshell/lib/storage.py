"""Persisted session state.

Stores per-session command history and variable snapshots as JSON,
either in a directory (one file per key) or in memory.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

TRANSIENT_VARS = ("PWD", "OLDPWD", "CACHE_SHORTCUTS")


def history_key(session_key: str) -> str:
    """Storage key of a session's history."""
    return f"history@session-{session_key}"


def var_key(session_key: str) -> str:
    """Storage key of a session's variables."""
    return f"var@session-{session_key}"


@dataclass
class Rehydrated:
    """Persisted state recovered for a session."""

    history: Optional[List[str]] = None
    var: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {"history": self.history, "var": self.var}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Rehydrated:
        """Create from dictionary."""
        return cls(**data)


@dataclass
class StoredEntry:
    """A single stored value with its write time."""

    key: str
    value: Any
    saved_at: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {"key": self.key, "value": self.value, "saved_at": self.saved_at}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> StoredEntry:
        """Create from dictionary."""
        return cls(**data)


class SessionStorage:
    """Key-value store for session history and variables."""

    def __init__(self, directory: Optional[Path] = None):
        """Initialize storage.

        Args:
            directory: Directory to store JSON files in, or None to keep
                entries in memory only
        """
        self.directory = Path(directory) if directory is not None else None
        if self.directory is not None:
            self.directory.mkdir(parents=True, exist_ok=True)
        self._memory: Dict[str, StoredEntry] = {}

    def _get_file(self, key: str) -> Path:
        """Get the file backing a key.

        Args:
            key: Storage key

        Returns:
            Path to the JSON file
        """
        assert self.directory is not None
        return self.directory / f"{key}.json"

    def get(self, key: str) -> Any:
        """Read a stored value.

        Args:
            key: Storage key

        Returns:
            The stored value, or None if absent or unreadable
        """
        if self.directory is None:
            entry = self._memory.get(key)
            return entry.value if entry else None

        path = self._get_file(key)
        if not path.exists():
            return None
        try:
            with open(path) as f:
                return StoredEntry.from_dict(json.load(f)).value
        except Exception as e:
            logger.warning(f"Failed to load stored entry {key}: {e}")
            return None

    def set(self, key: str, value: Any) -> None:
        """Store a JSON-serializable value.

        Args:
            key: Storage key
            value: Value to store
        """
        entry = StoredEntry(key=key, value=value)
        if self.directory is None:
            self._memory[key] = entry
            return
        try:
            with open(self._get_file(key), 'w') as f:
                json.dump(entry.to_dict(), f, indent=2, default=str)
        except Exception as e:
            logger.warning(f"Failed to save stored entry {key}: {e}")

    def remove(self, key: str) -> None:
        """Remove a stored value if present."""
        self._memory.pop(key, None)
        if self.directory is not None:
            self._get_file(key).unlink(missing_ok=True)

    def save_history(self, session_key: str, history: List[str]) -> None:
        """Persist a session's history."""
        self.set(history_key(session_key), list(history))

    def save_vars(self, session_key: str, variables: Dict[str, Any]) -> None:
        """Persist a session's variables, excluding transient ones."""
        persisted = {
            k: v for k, v in variables.items()
            if k not in TRANSIENT_VARS and not callable(v)
        }
        self.set(var_key(session_key), json.loads(json.dumps(persisted, default=str)))

    def rehydrate(self, session_key: str) -> Rehydrated:
        """Recover persisted history and variables of a session.

        Args:
            session_key: Session identifier

        Returns:
            Recovered state; fields are None when nothing usable was stored
        """
        history = self.get(history_key(session_key))
        if history is not None and not isinstance(history, list):
            logger.warning(f"{session_key}: ignoring malformed stored history")
            history = None

        variables = self.get(var_key(session_key))
        if variables is not None and not isinstance(variables, dict):
            logger.warning(f"{session_key}: ignoring malformed stored variables")
            variables = None

        return Rehydrated(history=history, var=variables)
