from __future__ import annotations

import copy
import itertools
import threading
import time
from typing import Any, Dict, Optional, TypedDict


class CacheEntry(TypedDict):
    data: Any
    source: Optional[str]
    sequence: Optional[int]
    last_updated: Optional[int]
    last_error: Optional[str]
    last_error_at: Optional[int]
    fetch_count: int
    error_count: int


class Cache:
    """Process-wide store of the latest poll result per key.

    Every poll takes a number from ``next_sequence()`` before it starts; a
    result only lands if no later-started poll has already written the key.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._store: Dict[str, CacheEntry] = {}
        self._sequence = itertools.count(1)

    def next_sequence(self) -> int:
        with self._lock:
            return next(self._sequence)

    def _ensure_key(self, key: str) -> CacheEntry:
        if key not in self._store:
            self._store[key] = {
                "data": [],
                "source": None,
                "sequence": None,
                "last_updated": None,
                "last_error": None,
                "last_error_at": None,
                "fetch_count": 0,
                "error_count": 0,
            }
        return self._store[key]

    @staticmethod
    def _is_stale(entry: CacheEntry, sequence: Optional[int]) -> bool:
        return sequence is not None and entry["sequence"] is not None and sequence < entry["sequence"]

    def set(self, key: str, data: Any, source: Optional[str] = None, sequence: Optional[int] = None) -> bool:
        now = int(time.time())
        with self._lock:
            entry = self._ensure_key(key)
            if self._is_stale(entry, sequence):
                return False
            entry["data"] = copy.deepcopy(data)
            entry["source"] = source
            if sequence is not None:
                entry["sequence"] = sequence
            entry["last_updated"] = now
            entry["last_error"] = None
            entry["last_error_at"] = None
            entry["fetch_count"] += 1
            return True

    def get(self, key: str) -> CacheEntry:
        with self._lock:
            entry = self._ensure_key(key)
            return self._copy(entry)

    def record_error(self, key: str, error: str, sequence: Optional[int] = None) -> bool:
        now = int(time.time())
        with self._lock:
            entry = self._ensure_key(key)
            if self._is_stale(entry, sequence):
                return False
            if sequence is not None:
                entry["sequence"] = sequence
            entry["last_error"] = error
            entry["last_error_at"] = now
            entry["error_count"] += 1
            return True

    def get_all_metadata(self) -> Dict[str, CacheEntry]:
        with self._lock:
            return {key: self._copy(entry) for key, entry in self._store.items()}

    @staticmethod
    def _copy(entry: CacheEntry) -> CacheEntry:
        return {
            "data": copy.deepcopy(entry["data"]),
            "source": entry["source"],
            "sequence": entry["sequence"],
            "last_updated": entry["last_updated"],
            "last_error": entry["last_error"],
            "last_error_at": entry["last_error_at"],
            "fetch_count": entry["fetch_count"],
            "error_count": entry["error_count"],
        }
