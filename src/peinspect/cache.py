"""
Result caches injected into the orchestrator.

Only the essential subset of a result is stored (file size, machine type,
timestamp, per-section name/address/sizes/entropy). DiskCache keeps one
gzip-compressed JSON file per key:

    <root>/
        ab/
            abcdef....json.gz
"""
from __future__ import annotations

import copy
import gzip
import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Optional, Protocol

from peinspect.errors import StorageWriteFailure
from peinspect.normalizer import normalize
from peinspect.types import AnalysisResult

logger = logging.getLogger(__name__)

CACHE_FORMAT_VERSION = 1


class ResultCache(Protocol):
    def get(self, key: str) -> Optional[AnalysisResult]: ...

    def put(self, key: str, result: AnalysisResult) -> None: ...


class MemoryCache:
    """In-process cache; one dict per instance."""

    def __init__(self):
        self._entries: dict[str, dict[str, Any]] = {}

    def get(self, key: str) -> Optional[AnalysisResult]:
        entry = self._entries.get(key)
        return None if entry is None else normalize(entry)

    def put(self, key: str, result: AnalysisResult) -> None:
        self._entries[key] = copy.deepcopy(result.essential())

    def __len__(self) -> int:
        return len(self._entries)


class DiskCache:
    """
    Thread-safe gzip JSON cache under root. Entries written by another format
    version are ignored; unreadable entries are removed.
    """

    def __init__(self, root: str | os.PathLike):
        self.root = Path(root)
        self._lock = threading.Lock()

    def _entry_path(self, key: str) -> Path:
        key = key.lower()
        return self.root / key[:2] / f"{key}.json.gz"

    def get(self, key: str) -> Optional[AnalysisResult]:
        path = self._entry_path(key)
        if not path.exists():
            return None
        try:
            with gzip.open(path, "rt", encoding="utf-8") as f:
                wrapper = json.load(f)
        except (gzip.BadGzipFile, json.JSONDecodeError, EOFError, OSError) as e:
            logger.warning("Cache read error for %s...: %s", key[:12], e)
            self._remove(path)
            return None

        if not isinstance(wrapper, dict) or wrapper.get("format_version") != CACHE_FORMAT_VERSION:
            logger.info("Cache format mismatch for %s..., ignoring.", key[:12])
            return None
        result = wrapper.get("result")
        if not isinstance(result, dict):
            self._remove(path)
            return None
        logger.debug("Cache hit for %s...", key[:12])
        return normalize(result)

    def put(self, key: str, result: AnalysisResult) -> None:
        """Store result.essential(). Any filesystem error becomes StorageWriteFailure."""
        path = self._entry_path(key)
        wrapper = {"format_version": CACHE_FORMAT_VERSION, "result": result.essential()}
        tmp = path.with_suffix(".tmp")
        with self._lock:
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                with gzip.open(tmp, "wt", encoding="utf-8") as f:
                    json.dump(wrapper, f, separators=(",", ":"))
                tmp.replace(path)
            except OSError as e:
                raise StorageWriteFailure(f"could not write cache entry {path}: {e}") from e

    def _remove(self, path: Path) -> None:
        with self._lock:
            try:
                path.unlink()
            except OSError as e:
                logger.debug("Could not remove cache entry %s: %s", path, e)

    def clear(self) -> int:
        """Delete every entry; returns the number removed."""
        removed = 0
        with self._lock:
            for entry in self.root.glob("*/*.json.gz"):
                try:
                    entry.unlink()
                    removed += 1
                except OSError as e:
                    logger.warning("Could not remove cache entry %s: %s", entry, e)
        return removed
