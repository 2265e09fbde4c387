from __future__ import annotations

"""Versioned keyed document stores with conditional writes."""

import copy
import fcntl
import json
import re
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Protocol


KEY_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,128}$")


class ConcurrentWriteError(RuntimeError):
    """A conditional write lost a race: the stored version moved on."""

    def __init__(self, collection: str, key: str, expected: int | None, actual: int | None) -> None:
        super().__init__(f"{collection}/{key}: expected version {expected}, found {actual}")
        self.collection = collection
        self.key = key
        self.expected = expected
        self.actual = actual


def validate_key(key: str) -> str:
    if not isinstance(key, str) or not KEY_PATTERN.match(key) or key in {".", ".."}:
        raise ValueError(f"Invalid document key: {key!r}")
    return key


class DocumentStore(Protocol):
    def get(self, collection: str, key: str) -> tuple[dict[str, Any], int] | None: ...

    def put(self, collection: str, key: str, doc: dict[str, Any], *, expected_version: int | None) -> int: ...

    def delete(self, collection: str, key: str) -> bool: ...

    def list(self, collection: str) -> list[tuple[dict[str, Any], int]]: ...


class MemoryStore:
    """In-process store for tests and embedding; one lock guards every collection."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._docs: dict[str, dict[str, tuple[dict[str, Any], int]]] = {}

    def get(self, collection: str, key: str) -> tuple[dict[str, Any], int] | None:
        with self._lock:
            entry = self._docs.get(collection, {}).get(validate_key(key))
            if entry is None:
                return None
            return copy.deepcopy(entry[0]), entry[1]

    def put(self, collection: str, key: str, doc: dict[str, Any], *, expected_version: int | None) -> int:
        validate_key(key)
        with self._lock:
            bucket = self._docs.setdefault(collection, {})
            current = bucket.get(key)
            actual = current[1] if current else None
            if actual != expected_version:
                raise ConcurrentWriteError(collection, key, expected_version, actual)
            version = (actual or 0) + 1
            bucket[key] = (copy.deepcopy(doc), version)
            return version

    def delete(self, collection: str, key: str) -> bool:
        with self._lock:
            return self._docs.get(collection, {}).pop(validate_key(key), None) is not None

    def list(self, collection: str) -> list[tuple[dict[str, Any], int]]:
        with self._lock:
            return [(copy.deepcopy(doc), version) for doc, version in self._docs.get(collection, {}).values()]


class JsonFileStore:
    """One JSON file per document under `<root>/<collection>/<key>.json`.

    Writes take an exclusive `flock` on a sibling lock file, compare versions,
    then replace the document atomically, so the check-and-write holds across
    processes sharing the same data home.
    """

    def __init__(self, root: Path, locks_root: Path | None = None) -> None:
        self.root = root
        self.locks_root = locks_root or root / ".locks"

    def _path(self, collection: str, key: str) -> Path:
        return self.root / validate_key(collection) / f"{validate_key(key)}.json"

    @contextmanager
    def _locked(self, collection: str, key: str) -> Iterator[None]:
        lock_file = self.locks_root / collection / f"{key}.lock"
        lock_file.parent.mkdir(parents=True, exist_ok=True)
        with lock_file.open("a") as handle:
            fcntl.flock(handle, fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(handle, fcntl.LOCK_UN)

    @staticmethod
    def _read(path: Path) -> tuple[dict[str, Any], int] | None:
        if not path.exists():
            return None
        payload = json.loads(path.read_text(encoding="utf-8"))
        return payload["doc"], int(payload["version"])

    @staticmethod
    def _write(path: Path, doc: dict[str, Any], version: int) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = path.parent / f".{path.name}.tmp"
        temp_path.write_text(json.dumps({"version": version, "doc": doc}, indent=2), encoding="utf-8")
        temp_path.replace(path)

    def get(self, collection: str, key: str) -> tuple[dict[str, Any], int] | None:
        return self._read(self._path(collection, key))

    def put(self, collection: str, key: str, doc: dict[str, Any], *, expected_version: int | None) -> int:
        path = self._path(collection, key)
        with self._locked(collection, key):
            current = self._read(path)
            actual = current[1] if current else None
            if actual != expected_version:
                raise ConcurrentWriteError(collection, key, expected_version, actual)
            version = (actual or 0) + 1
            self._write(path, doc, version)
            return version

    def delete(self, collection: str, key: str) -> bool:
        path = self._path(collection, key)
        with self._locked(collection, key):
            if not path.exists():
                return False
            path.unlink()
            return True

    def list(self, collection: str) -> list[tuple[dict[str, Any], int]]:
        folder = self.root / validate_key(collection)
        if not folder.is_dir():
            return []
        entries: list[tuple[dict[str, Any], int]] = []
        for path in sorted(folder.glob("*.json")):
            entry = self._read(path)
            if entry is not None:
                entries.append(entry)
        return entries
