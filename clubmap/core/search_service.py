"""
Read side of the snapshot: a cached handle on clubs.json with the
edit-mode club search.
"""

import json
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import config
from util.logging import logger

MIN_QUERY_LENGTH = 2


class SnapshotReader:
    """Loads the snapshot once and serves it until invalidated.

    Subscribe ``invalidate`` to the synchronizer so a rebuild is picked up
    on the next read.
    """

    def __init__(self, path: Optional[str] = None):
        self._path = path
        self._lock = threading.Lock()
        self._entries: Optional[List[Dict[str, Any]]] = None

    @property
    def path(self) -> Path:
        return Path(self._path or config.SNAPSHOT_PATH)

    def load(self) -> List[Dict[str, Any]]:
        with self._lock:
            if self._entries is None:
                self._entries = self._read()
            return self._entries

    def _read(self) -> List[Dict[str, Any]]:
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                entries = json.load(handle)
        except FileNotFoundError:
            logger.warning(f"Snapshot {self.path} not found; serving empty list")
            return []
        if not isinstance(entries, list):
            raise ValueError(f"Snapshot {self.path} must contain a JSON array")
        return entries

    def invalidate(self, *_args) -> None:
        """Drop the cached snapshot. Accepts and ignores a rebuild result."""
        with self._lock:
            self._entries = None
        logger.debug(f"Snapshot cache invalidated ({self.path})")

    def search(self, query: str, limit: int = 10) -> List[Dict[str, Any]]:
        """Case-insensitive substring match over name, school, city and tags."""
        term = (query or "").strip().casefold()
        if len(term) < MIN_QUERY_LENGTH:
            return []

        results = []
        for entry in self.load():
            haystack = [entry.get("name"), entry.get("school"), entry.get("city")]
            haystack.extend(entry.get("tags") or [])
            if any(term in str(value).casefold() for value in haystack if value):
                results.append(entry)
                if len(results) >= limit:
                    break
        return results


# Global reader bound to the configured snapshot path
snapshot_reader = SnapshotReader()
