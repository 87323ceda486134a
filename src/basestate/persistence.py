"""Persistence adapters for persistent signals.

An adapter only stores text by key. Signals do the JSON encoding and own the
fail-soft policy, so adapters are free to raise on I/O errors.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Protocol, runtime_checkable
from urllib.parse import quote


@runtime_checkable
class Storage(Protocol):
    """Key/value text storage used by persistent signals."""

    def load(self, key: str) -> str | None:
        """Return the stored text for key, or None when absent."""
        ...

    def save(self, key: str, text: str) -> None:
        ...


class MemoryStorage:
    """Process-lifetime storage. The default adapter."""

    def __init__(self, data: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(data) if data else {}

    def load(self, key: str) -> str | None:
        return self._data.get(key)

    def save(self, key: str, text: str) -> None:
        self._data[key] = text

    def clear(self) -> None:
        self._data.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def __repr__(self) -> str:
        return f"MemoryStorage({len(self._data)} keys)"


class FileStorage:
    """One JSON text file per key inside a directory."""

    def __init__(self, directory: str | os.PathLike) -> None:
        self._directory = Path(directory)

    def _path(self, key: str) -> Path:
        # Percent-encoding is reversible, so distinct keys never share a file.
        return self._directory / f"{quote(key, safe='')}.json"

    def load(self, key: str) -> str | None:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def save(self, key: str, text: str) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_text(text, encoding="utf-8")
        os.replace(tmp, path)

    def __repr__(self) -> str:
        return f"FileStorage({str(self._directory)!r})"


_storage: Storage = MemoryStorage()


def set_storage(storage: Storage) -> None:
    """Replace the default adapter used by persistent signals.

    Call once at startup:
        basestate.set_storage(FileStorage("~/.myapp/state"))
    """
    global _storage
    _storage = storage


def get_storage() -> Storage:
    return _storage
