"""
UI Preferences

Remembers filter and column choices across sessions. Values are strings
(JSON for structured values), mirroring a browser's local storage.

Preferences are best effort: a missing or corrupt file reads as empty and
a failed write is logged, never raised.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from edutech.utils.config import get_settings

logger = logging.getLogger(__name__)


class MemoryPreferenceStore:
    """Preferences held in memory only (tests, ephemeral sessions)."""

    def __init__(self, values: Optional[Dict[str, str]] = None):
        self._values: Dict[str, str] = dict(values or {})

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self._values.get(key, default)

    def set(self, key: str, value: str) -> None:
        self._values[key] = str(value)
        self._persist()

    def delete(self, key: str) -> bool:
        if key not in self._values:
            return False
        del self._values[key]
        self._persist()
        return True

    def get_json(self, key: str, default: Any = None) -> Any:
        """Decode a JSON value; undecodable values read as ``default``."""
        raw = self._values.get(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except ValueError:
            logger.debug(f"Ignoring malformed preference {key}")
            return default

    def set_json(self, key: str, value: Any) -> None:
        self.set(key, json.dumps(value))

    def keys(self) -> List[str]:
        return list(self._values)

    def clear(self) -> None:
        self._values.clear()
        self._persist()

    def _persist(self) -> None:
        pass


class PreferenceStore(MemoryPreferenceStore):
    """
    JSON file-backed preferences.

    Usage:
        prefs = PreferenceStore()
        prefs.set("adminUsers.role", "instructor")
        prefs.get("adminUsers.role")  # "instructor"
    """

    def __init__(self, path: Optional[str] = None):
        """
        Initialize store.

        Args:
            path: Preferences file.
                  Defaults to Settings.PREFERENCES_PATH, then ~/.edutech/preferences.json
        """
        if path is None:
            path = get_settings().PREFERENCES_PATH or str(
                Path.home() / ".edutech" / "preferences.json"
            )

        self.path = Path(path)
        super().__init__(self._load())
        logger.debug(f"PreferenceStore loaded {len(self._values)} values from {self.path}")

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read preferences from {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _persist(self) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w") as f:
                json.dump(self._values, f, indent=2, sort_keys=True)
            os.replace(tmp, self.path)
        except OSError as e:
            logger.warning(f"Could not save preferences to {self.path}: {e}")
