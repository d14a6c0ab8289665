from __future__ import annotations

"""Key-value storage port used for sessions and result history."""

import time
from pathlib import Path
from typing import Protocol
from urllib.parse import quote

from .errors import StorageError


class KeyValueStore(Protocol):
    """String storage scoped to one local profile. Values are UTF-8 JSON text."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryKeyValueStore:
    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self.values: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self.values.get(key)

    def set(self, key: str, value: str) -> None:
        self.values[key] = value

    def remove(self, key: str) -> None:
        self.values.pop(key, None)


class FileKeyValueStore:
    """One file per key under a state directory, replaced atomically on write."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str) -> Path:
        return self.root / f"{quote(key, safe='@._-')}.json"

    def get(self, key: str) -> str | None:
        path = self.path_for(key)
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise StorageError(f"Could not read stored value for {key!r}.", key=key) from exc

    def set(self, key: str, value: str) -> None:
        path = self.path_for(key)
        temp_path = path.parent / f".{path.name}.tmp"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            for attempt in range(5):
                temp_path.write_text(value, encoding="utf-8")
                try:
                    temp_path.replace(path)
                    return
                except PermissionError:
                    if attempt == 4:
                        raise
                    # On Windows, AV/indexers can briefly lock newly-written temp files.
                    time.sleep(0.02 * (attempt + 1))
        except OSError as exc:
            raise StorageError(f"Could not write stored value for {key!r}.", key=key) from exc

    def remove(self, key: str) -> None:
        try:
            self.path_for(key).unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Could not remove stored value for {key!r}.", key=key) from exc
