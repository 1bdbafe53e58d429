"""
Key-value storage for tracker state.

The tracker and the content-id resolver persist opaque JSON blobs under a
handful of fixed keys. The backend is picked once at construction time:
a no-op store for contexts without persistence, an in-memory store, or a
directory of JSON files for warm restarts of a server process.
"""

import os
import re
import structlog
from pathlib import Path
from typing import Optional, Protocol

logger = structlog.get_logger(__name__)

_SAFE_KEY = re.compile(r"^[A-Za-z0-9_.-]+$")


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...


class NullStore:
    """Store that keeps nothing. Reads always miss."""

    def get(self, key: str) -> Optional[str]:
        return None

    def set(self, key: str, value: str) -> None:
        pass


class MemoryStore:
    """Dict-backed store, lives as long as the process."""

    def __init__(self, initial: Optional[dict[str, str]] = None):
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def __contains__(self, key: str) -> bool:
        return key in self._data


class JsonFileStore:
    """
    One file per key under a directory.

    Writes go to a temp file first and are renamed into place, so a crash
    mid-write leaves the previous value intact.
    """

    def __init__(self, directory: str):
        self.directory = Path(directory)

    def _path_for(self, key: str) -> Path:
        if not _SAFE_KEY.match(key):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self.directory / f"{key}.json"

    def get(self, key: str) -> Optional[str]:
        path = self._path_for(key)
        if not path.exists():
            return None
        with open(path, "r", encoding="utf-8") as f:
            return f.read()

    def set(self, key: str, value: str) -> None:
        path = self._path_for(key)
        self.directory.mkdir(parents=True, exist_ok=True)

        temp_file = path.with_suffix(".json.tmp")
        with open(temp_file, "w", encoding="utf-8") as f:
            f.write(value)
            f.flush()
            os.fsync(f.fileno())

        temp_file.replace(path)


def build_store(config: dict) -> KeyValueStore:
    """Create the store named by the ``storage`` config section."""
    backend = config.get("backend", "none")

    if backend == "file":
        store = JsonFileStore(config["directory"])
    elif backend == "memory":
        store = MemoryStore()
    elif backend == "none":
        store = NullStore()
    else:
        raise ValueError(f"Unknown storage backend: {backend}")

    logger.info("storage_backend_selected", backend=backend)
    return store
