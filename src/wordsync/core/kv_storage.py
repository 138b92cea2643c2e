"""Key-value persistence primitives for wordsync.

The entry store and sync state persist through a tiny string-to-string
interface, so the same code runs over process memory, a directory of files,
or any other durable store with get/set/remove semantics.
"""

from __future__ import annotations

import os
import tempfile
import urllib.parse
from pathlib import Path
from typing import Dict, Optional, Protocol, Union

__all__ = ["KeyValueStorage", "MemoryStorage", "FileStorage", "StorageCapacityError"]


class StorageCapacityError(Exception):
    """Raised when a write would exceed the storage's capacity."""

    def __init__(self, key: str, size: int, capacity: int) -> None:
        self.key = key
        self.size = size
        self.capacity = capacity
        super().__init__(
            f"Writing {size} bytes to '{key}' exceeds storage capacity of {capacity} bytes"
        )


class KeyValueStorage(Protocol):
    """String-by-string persistence primitive."""

    def get_item(self, key: str) -> Optional[str]:
        ...

    def set_item(self, key: str, value: str) -> None:
        ...

    def remove_item(self, key: str) -> None:
        ...


def _size_of(value: str) -> int:
    return len(value.encode("utf-8"))


class MemoryStorage:
    """In-process storage, optionally bounded to a total byte capacity."""

    def __init__(self, capacity: Optional[int] = None) -> None:
        self._store: Dict[str, str] = {}
        self.capacity = capacity

    def get_item(self, key: str) -> Optional[str]:
        return self._store.get(key)

    def set_item(self, key: str, value: str) -> None:
        if self.capacity is not None:
            others = sum(_size_of(v) for k, v in self._store.items() if k != key)
            size = _size_of(value)
            if others + size > self.capacity:
                raise StorageCapacityError(key, size, self.capacity - others)
        self._store[key] = value

    def remove_item(self, key: str) -> None:
        self._store.pop(key, None)

    def keys(self) -> list:
        return list(self._store)


class FileStorage:
    """Directory-backed storage: one file per key.

    Writes go to a temporary file that is renamed over the target, so a crash
    never leaves a half-written value behind.
    """

    def __init__(self, directory: Union[Path, str], quota: Optional[int] = None) -> None:
        """Initialize file storage.

        Args:
            directory: Directory holding one file per key (created if missing)
            quota: Optional total byte budget across all keys
        """
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.quota = quota

    def _path_for(self, key: str) -> Path:
        return self.directory / f"{urllib.parse.quote(key, safe='')}.json"

    def get_item(self, key: str) -> Optional[str]:
        path = self._path_for(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def set_item(self, key: str, value: str) -> None:
        target = self._path_for(key)
        if self.quota is not None:
            others = sum(
                p.stat().st_size for p in self.directory.glob("*.json") if p != target
            )
            size = _size_of(value)
            if others + size > self.quota:
                raise StorageCapacityError(key, size, self.quota - others)

        fd, tmp_name = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
            os.replace(tmp_name, target)
        except OSError as e:
            Path(tmp_name).unlink(missing_ok=True)
            if getattr(e, "errno", None) == 28:  # ENOSPC
                raise StorageCapacityError(key, _size_of(value), 0) from e
            raise

    def remove_item(self, key: str) -> None:
        self._path_for(key).unlink(missing_ok=True)
