"""
Hot listing key registry used for stampede protection and cache warming.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Union
import json
import threading


class HotKeyRegistry:
    """
    Decides which listing IDs are "hot" and therefore lock-guarded on a miss.

    In ``all`` mode every key is hot. In ``listed`` mode the hot set is the
    curated JSON file plus keys marked at runtime. The file looks like::

        {"keys": [{"listing_id": 17, "weight": 0.9}, ...], "max_entries": 100}

    A missing or malformed file yields an empty set rather than an error.
    """

    def __init__(self, mode: str = "all", config_path: Optional[Union[str, Path]] = None):
        if mode not in ("all", "listed"):
            raise ValueError("mode must be 'all' or 'listed'")
        self.mode = mode
        self._path = Path(config_path) if config_path else None
        self._lock = threading.Lock()
        self._runtime: Dict[str, Any] = {}
        self._entries: List[Dict[str, Any]] = self._load()

    @property
    def path(self) -> Optional[Path]:
        """Return the resolved path to the data file."""
        return self._path

    def refresh(self) -> None:
        """Reload the hot key data from disk."""
        entries = self._load()
        with self._lock:
            self._entries = entries

    def mark_hot(self, key: Any) -> None:
        """Designate a key as hot until the process restarts."""
        with self._lock:
            self._runtime[str(key)] = key

    def is_hot(self, key: Any) -> bool:
        if self.mode == "all":
            return True
        token = str(key)
        with self._lock:
            return token in self._runtime or any(str(e.get("listing_id")) == token for e in self._entries)

    def warm_keys(self, limit: Optional[int] = None) -> List[Any]:
        """Curated keys by descending weight, then runtime-marked keys."""
        with self._lock:
            ranked = sorted(self._entries, key=lambda item: float(item.get("weight", 0.0)), reverse=True)
            keys: List[Any] = [entry["listing_id"] for entry in ranked if "listing_id" in entry]
            seen = {str(key) for key in keys}
            keys.extend(key for token, key in self._runtime.items() if token not in seen)
        if limit:
            keys = keys[:limit]
        return keys

    def _load(self) -> List[Dict[str, Any]]:
        """Read JSON payload from disk. Returns no entries on failure."""
        if self._path is None or not self._path.exists():
            return []

        try:
            with self._path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except (ValueError, OSError):
            # A malformed file disables curated keys instead of blocking startup.
            return []

        entries = payload.get("keys", []) if isinstance(payload, dict) else []
        max_entries = payload.get("max_entries") if isinstance(payload, dict) else None
        entries = [entry for entry in entries if isinstance(entry, dict)]
        if max_entries:
            entries = sorted(entries, key=lambda item: float(item.get("weight", 0.0)), reverse=True)[:max_entries]
        return entries
