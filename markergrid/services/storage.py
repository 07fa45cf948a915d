from __future__ import annotations

import json
import logging
from pathlib import Path
from threading import Lock
from typing import Any, Protocol

from markergrid.errors import StorageError
from markergrid.logging_utils import log_event

logger = logging.getLogger(__name__)


class StorageBackend(Protocol):
    def exists(self, name: str) -> bool: ...

    def get(self, name: str) -> dict[str, Any]: ...

    def put(self, name: str, payload: dict[str, Any]) -> None: ...

    def list_names(self) -> list[str]: ...

    def rename(self, source: str, target: str) -> None: ...


class DirectoryBackend:
    """One pretty-printed JSON file per slot name inside ``root``."""

    def __init__(self, root: Path | str):
        self.root = Path(root)

    def _path(self, name: str) -> Path:
        if "/" in name or "\\" in name or name in {"", ".", ".."}:
            raise StorageError("resolve", name, "slot names may not contain path separators")
        return self.root / name

    def exists(self, name: str) -> bool:
        return self._path(name).is_file()

    def get(self, name: str) -> dict[str, Any]:
        path = self._path(name)
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise StorageError("read", name, "no such slot") from exc
        except (OSError, json.JSONDecodeError) as exc:
            raise StorageError("read", name, str(exc)) from exc

    def put(self, name: str, payload: dict[str, Any]) -> None:
        path = self._path(name)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as exc:
            raise StorageError("write", name, str(exc)) from exc
        log_event(logger, "storage_write", slot=name, output_size_bytes=path.stat().st_size)

    def list_names(self) -> list[str]:
        try:
            return sorted(entry.name for entry in self.root.iterdir() if entry.is_file())
        except OSError as exc:
            raise StorageError("list", str(self.root), str(exc)) from exc

    def rename(self, source: str, target: str) -> None:
        try:
            self._path(source).rename(self._path(target))
        except OSError as exc:
            raise StorageError("rename", source, str(exc)) from exc


class MemoryBackend:
    def __init__(self):
        self._slots: dict[str, str] = {}
        self._lock = Lock()

    def exists(self, name: str) -> bool:
        with self._lock:
            return name in self._slots

    def get(self, name: str) -> dict[str, Any]:
        with self._lock:
            raw = self._slots.get(name)
        if raw is None:
            raise StorageError("read", name, "no such slot")
        return json.loads(raw)

    def put(self, name: str, payload: dict[str, Any]) -> None:
        encoded = json.dumps(payload)
        with self._lock:
            self._slots[name] = encoded

    def list_names(self) -> list[str]:
        with self._lock:
            return sorted(self._slots)

    def rename(self, source: str, target: str) -> None:
        with self._lock:
            if source not in self._slots:
                raise StorageError("rename", source, "no such slot")
            self._slots[target] = self._slots.pop(source)
