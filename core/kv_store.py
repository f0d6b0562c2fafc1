"""
Folio - Durable Key-Value Store

String values keyed by name, kept together in one JSON blob on disk.
Reading progress, bookmarks and the recent-books list all live here,
each under its own namespaced key.
"""

import json
import threading
from pathlib import Path
from typing import Dict, Optional, Protocol

from core.logger import log_info, log_warning, log_error


class KeyValueStore(Protocol):
    """Minimal string store used by the persistence layers."""

    def get_string(self, key: str) -> Optional[str]:
        ...

    def set_string(self, key: str, value: str) -> None:
        ...

    def remove(self, key: str) -> None:
        ...


class JsonFileStore:
    """
    Key-value store persisted as a single JSON object.

    Every write rewrites the whole file. When no path is given the store
    lives in memory only, which is what tests and throwaway sessions use.
    """

    def __init__(self, path: Optional[Path] = None):
        self._path = path
        self._values: Dict[str, str] = {}
        self._file_lock = threading.Lock()

        if self._path is not None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._load()

    @property
    def path(self) -> Optional[Path]:
        return self._path

    def _load(self) -> None:
        """Load the blob from disk."""
        if not self._path.exists():
            return
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            log_warning(f"Invalid storage file, starting empty: {e}")
            return
        except OSError as e:
            log_error(f"Failed to read storage file {self._path}: {e}")
            return

        if not isinstance(data, dict):
            log_warning("Storage file is not a JSON object, starting empty")
            return

        # Only string values are meaningful; anything else is dropped
        self._values = {k: v for k, v in data.items() if isinstance(v, str)}
        log_info(f"Loaded {len(self._values)} stored keys", prefix="💾")

    def _save(self) -> None:
        """Write the blob to disk. Caller holds _file_lock."""
        if self._path is None:
            return
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(self._values, f, indent=2, ensure_ascii=False)
        tmp_path.replace(self._path)

    def get_string(self, key: str) -> Optional[str]:
        """Get the value stored under key, or None."""
        return self._values.get(key)

    def set_string(self, key: str, value: str) -> None:
        """Store value under key, replacing any previous value."""
        with self._file_lock:
            self._values[key] = value
            self._save()

    def remove(self, key: str) -> None:
        """Delete key if present."""
        with self._file_lock:
            if self._values.pop(key, None) is not None:
                self._save()

    def keys(self):
        return list(self._values.keys())
