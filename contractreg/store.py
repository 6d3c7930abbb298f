# contractreg/store.py
"""
JSON file persistence for registry state.

Layout of the state file:

    {
        "version": "1.0",
        "owner": "0x...",
        "authorized": ["0x...", ...],
        "emergency_mode": false,
        "names": ["UserService", ...],
        "entries": {
            "UserService": {"address": "0x...", "version": 2, "history": [...]}
        }
    }

Writes go to a temporary file in the same directory and are moved into
place, so a crash never leaves a half-written state file behind.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

from .errors import StoreError

logger = logging.getLogger(__name__)

STATE_FORMAT_VERSION = "1.0"


class RegistryStore:
    """
    Persistent storage for a single registry's state.

    Args:
        path: State file location (parent directories are created)
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> Optional[Dict[str, Any]]:
        """
        Load state from disk.

        Returns:
            The state dict, or None if no state has been saved yet

        Raises:
            StoreError: if the file exists but cannot be parsed
        """
        if not self.path.exists():
            return None
        try:
            with open(self.path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StoreError(f"Failed to load registry state from {self.path}: {e}")

        if not isinstance(data, dict) or "owner" not in data:
            raise StoreError(f"Registry state in {self.path} is missing an owner")
        if data.get("version") != STATE_FORMAT_VERSION:
            raise StoreError(f"Unsupported registry state version: {data.get('version')!r}")
        return data

    def save(self, state: Dict[str, Any]) -> None:
        """Atomically write state to disk."""
        data = dict(state)
        data["version"] = STATE_FORMAT_VERSION

        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
        )
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise
        logger.debug(f"Saved registry state to {self.path}")
