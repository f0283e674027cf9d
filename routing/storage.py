#Purpose: Key-value persistence used (optionally) by the route cache.
#Anything with get/set/delete/keys over bytes can be plugged in.
#The cache must keep working when a store is missing or failing, so stores
#raise PersistenceError and the cache decides what to do with it.

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Union
from urllib.parse import quote, unquote

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """Raised when the key-value store cannot be read or written."""
    pass


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[bytes]: ...

    def set(self, key: str, value: bytes) -> None: ...

    def delete(self, key: str) -> None: ...

    def keys(self, prefix: str = "") -> List[str]: ...


class InMemoryKeyValueStore:
    """
    Dict-backed store. Survives nothing, useful for tests and single-process runs.
    """

    def __init__(self) -> None:
        self._data: Dict[str, bytes] = {}

    def get(self, key: str) -> Optional[bytes]:
        return self._data.get(key)

    def set(self, key: str, value: bytes) -> None:
        self._data[key] = bytes(value)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: str = "") -> List[str]:
        return [key for key in self._data if key.startswith(prefix)]


class FileKeyValueStore:
    """
    One file per key inside a directory. Keys are percent-encoded into file names.
    """

    SUFFIX = ".json"

    def __init__(self, directory: Union[str, Path]) -> None:
        self.directory = Path(directory)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PersistenceError(f"cannot create store directory {self.directory}: {exc}") from exc

    def _path(self, key: str) -> Path:
        return self.directory / (quote(key, safe="") + self.SUFFIX)

    def get(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise PersistenceError(f"cannot read {path}: {exc}") from exc

    def set(self, key: str, value: bytes) -> None:
        path = self._path(key)
        tmp = path.with_name(path.name + ".tmp")
        try:
            tmp.write_bytes(value)
            os.replace(tmp, path)  # readers never see a half-written file
        except OSError as exc:
            raise PersistenceError(f"cannot write {path}: {exc}") from exc

    def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            raise PersistenceError(f"cannot delete {path}: {exc}") from exc

    def keys(self, prefix: str = "") -> List[str]:
        try:
            names = [p.name for p in self.directory.iterdir() if p.name.endswith(self.SUFFIX)]
        except OSError as exc:
            raise PersistenceError(f"cannot list {self.directory}: {exc}") from exc

        keys = [unquote(name[: -len(self.SUFFIX)]) for name in names]
        return sorted(key for key in keys if key.startswith(prefix))
