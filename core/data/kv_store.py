"""
Key-Value Store
Local persisted storage for the market cache and rate-limit state.
Values are strings (JSON documents); one file per key on disk.
"""

import asyncio
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional

from loguru import logger


class KeyValueStore(ABC):
    """
    Async string store.

    Implementations may raise on I/O failure; callers (MarketCache,
    RateLimitTracker) catch and log.
    """

    @abstractmethod
    async def get_item(self, key: str) -> Optional[str]:
        """Return the stored value, or None if the key is absent."""

    @abstractmethod
    async def set_item(self, key: str, value: str) -> None:
        """Store a value, overwriting any previous one."""

    @abstractmethod
    async def remove_item(self, key: str) -> None:
        """Delete a key. No-op if absent."""


class MemoryKeyValueStore(KeyValueStore):
    """In-process store. Contents are lost on exit."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._items: Dict[str, str] = dict(initial or {})

    async def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    async def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._items.keys())


class FileKeyValueStore(KeyValueStore):
    """
    File-backed store under a data directory.

    Each key maps to `<data_dir>/<sanitized key>.json`. Writes go through a
    temporary file and a rename so a crash never leaves half a document.
    """

    def __init__(self, data_dir: str = "data/store"):
        """
        Initialize file store.

        Args:
            data_dir: Directory holding one file per key
        """
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        logger.debug(f"FileKeyValueStore initialized at {self.data_dir}")

    def _path_for(self, key: str) -> Path:
        safe = re.sub(r"[^A-Za-z0-9_.-]", "_", key).strip("_") or "_"
        return self.data_dir / f"{safe}.json"

    async def get_item(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(self._read, self._path_for(key))

    async def set_item(self, key: str, value: str) -> None:
        await asyncio.to_thread(self._write, self._path_for(key), value)

    async def remove_item(self, key: str) -> None:
        await asyncio.to_thread(self._path_for(key).unlink, True)

    @staticmethod
    def _read(path: Path) -> Optional[str]:
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    @staticmethod
    def _write(path: Path, value: str) -> None:
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_text(value, encoding="utf-8")
        tmp_path.replace(path)
