"""
Durable key-value storage shared between sessions.

Each storage instance is one session's view of a shared backing store (a JSON
file on disk, or a plain dict for in-process use). Writes go straight to the
backing store; writes made by *other* sessions are discovered by ``refresh()``
and delivered to subscribers as ``StorageChange`` events, the same way a
browser tab learns about another tab's localStorage writes. The writing
session never receives an event for its own write.
"""

import asyncio
import json
import os
import tempfile
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import structlog

logger = structlog.get_logger(__name__)


class StorageError(Exception):
    """The backing store is unavailable, full, or holds unreadable data."""


@dataclass(frozen=True)
class StorageChange:
    """A value written for ``key`` by another session."""

    key: str
    old_value: str | None
    new_value: str | None


StorageListener = Callable[[StorageChange], None]


class KeyValueStorage(Protocol):
    """
    Protocol for string storage addressed by key.

    Why Protocol over ABC: tests and alternative backends only need the same
    four methods.
    """

    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...

    def subscribe(self, listener: StorageListener) -> Callable[[], None]: ...


class _SessionStorage:
    """Shared change-detection logic; subclasses provide the backing store."""

    def __init__(self, max_bytes: int | None = None) -> None:
        self.max_bytes = max_bytes
        self._listeners: list[StorageListener] = []
        self._snapshot: dict[str, str] = {}
        self.logger = logger.bind(component=type(self).__name__)
        try:
            self._snapshot = self._read_all()
        except StorageError as e:
            self.logger.warning("storage_snapshot_failed", error=str(e))

    # Backing store access, implemented by subclasses
    def _read_all(self) -> dict[str, str]:
        raise NotImplementedError

    def _write_all(self, data: dict[str, str]) -> None:
        raise NotImplementedError

    def _read_for_write(self) -> dict[str, str]:
        """Current contents, or empty when unreadable so the next write replaces them."""
        try:
            return self._read_all()
        except StorageError as e:
            self.logger.warning("storage_unreadable_overwriting", error=str(e))
            return {}

    def get_item(self, key: str) -> str | None:
        value = self._read_all().get(key)
        if value is None:
            self._snapshot.pop(key, None)
        else:
            self._snapshot[key] = value
        return value

    def set_item(self, key: str, value: str) -> None:
        data = self._read_for_write()
        data[key] = value
        self._check_quota(data)
        self._write_all(data)
        self._snapshot[key] = value

    def remove_item(self, key: str) -> None:
        data = self._read_for_write()
        if data.pop(key, None) is not None:
            self._write_all(data)
        self._snapshot.pop(key, None)

    def subscribe(self, listener: StorageListener) -> Callable[[], None]:
        """Register a listener for changes made by other sessions."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def refresh(self) -> list[StorageChange]:
        """
        Compare the backing store with this session's last known view and
        notify listeners about every key that changed.
        """
        try:
            current = self._read_all()
        except StorageError as e:
            self.logger.warning("storage_refresh_failed", error=str(e))
            return []

        changes = [
            StorageChange(key=key, old_value=self._snapshot.get(key), new_value=current.get(key))
            for key in sorted(set(current) | set(self._snapshot))
            if current.get(key) != self._snapshot.get(key)
        ]
        self._snapshot = dict(current)

        for change in changes:
            self.logger.debug("storage_change_observed", key=change.key)
            for listener in list(self._listeners):
                try:
                    listener(change)
                except Exception as e:
                    self.logger.exception("storage_listener_failed", key=change.key, error=str(e))
        return changes

    async def watch(self, interval_seconds: float, stop: asyncio.Event) -> None:
        """Poll for foreign writes until ``stop`` is set."""
        self.logger.info("storage_watch_started", interval_seconds=interval_seconds)
        try:
            while not stop.is_set():
                self.refresh()
                try:
                    await asyncio.wait_for(stop.wait(), timeout=interval_seconds)
                except TimeoutError:
                    pass
        finally:
            self.logger.info("storage_watch_stopped")

    def _check_quota(self, data: dict[str, str]) -> None:
        if self.max_bytes is None:
            return
        size = len(json.dumps(data, ensure_ascii=False).encode("utf-8"))
        if size > self.max_bytes:
            raise StorageError(f"Storage quota exceeded ({size} > {self.max_bytes} bytes)")


class MemoryStorage(_SessionStorage):
    """
    In-process storage. Sessions created over the same ``backing`` dict see
    each other's writes on ``refresh()``.
    """

    def __init__(self, backing: dict[str, str] | None = None, max_bytes: int | None = None) -> None:
        self.backing: dict[str, str] = backing if backing is not None else {}
        super().__init__(max_bytes=max_bytes)

    def _read_all(self) -> dict[str, str]:
        return dict(self.backing)

    def _write_all(self, data: dict[str, str]) -> None:
        self.backing.clear()
        self.backing.update(data)


class JsonFileStorage(_SessionStorage):
    """
    Storage kept as one JSON object in a file, replaced atomically on write.

    Writes rewrite the whole object from the contents read just before. Two
    processes writing different keys at the same moment can therefore lose
    one of the keys; within one key the last writer wins.
    """

    def __init__(self, path: str | Path, max_bytes: int | None = None) -> None:
        self.path = Path(path)
        super().__init__(max_bytes=max_bytes)

    def _read_all(self) -> dict[str, str]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as e:
            raise StorageError(f"Cannot read {self.path}: {e}") from e
        except UnicodeDecodeError as e:
            raise StorageError(f"Corrupted storage file {self.path}: {e}") from e

        if not raw.strip():
            return {}
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, RecursionError) as e:
            raise StorageError(f"Corrupted storage file {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise StorageError(f"Storage file {self.path} does not hold a JSON object")
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _write_all(self, data: dict[str, str]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, ensure_ascii=False)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StorageError(f"Cannot write {self.path}: {e}") from e
