"""Persistent key-value storage for values that must survive restarts."""

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

from .platform import create_secure_temp_file


class KeyValueStore(ABC):
    """Gateway used by persisted state cells."""

    @abstractmethod
    def load(self, key: str) -> Optional[Any]:
        """Return the JSON value stored under key, or None when never written."""

    @abstractmethod
    def save(self, key: str, value: Any) -> None:
        """Store a JSON-serializable value under key."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Forget key. Missing keys are ignored."""


class MemoryStore(KeyValueStore):
    """Process-local store, used by tests and ephemeral sessions."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = dict(initial or {})

    def load(self, key: str) -> Optional[Any]:
        return self._data.get(key)

    def save(self, key: str, value: Any) -> None:
        # Round-trip through JSON so both stores reject the same values
        self._data[key] = json.loads(json.dumps(value))

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStore(KeyValueStore):
    """
    Key-value store backed by a single JSON document.

    Every write replaces the document atomically: the new content is written to a
    temporary file in the same directory and moved over the old one, so a crash
    mid-write leaves the previous document intact.

    Writes are synchronous and complete before ``save``/``delete`` return, also
    when called from a handler on the event loop. The document only ever holds
    the session and the repository selection, a few hundred bytes written once
    per login, selection or logout.
    """

    def __init__(self, path: Path):
        self.path = path
        self.logger = logging.getLogger('soten.store')
        self._lock = threading.Lock()

    def _read_document(self) -> Dict[str, Any]:
        try:
            text = self.path.read_text(encoding='utf-8')
        except FileNotFoundError:
            return {}
        except OSError as e:
            self.logger.warning(f"Cannot read state file {self.path}: {e}")
            return {}

        try:
            document = json.loads(text)
        except json.JSONDecodeError as e:
            self.logger.warning(f"Ignoring corrupted state file {self.path}: {e}")
            return {}

        if not isinstance(document, dict):
            self.logger.warning(f"Ignoring state file {self.path}: top level is not an object")
            return {}
        return document

    def _write_document(self, document: Dict[str, Any]) -> None:
        fd, temp_path = create_secure_temp_file(self.path.parent, suffix='.json.tmp')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as handle:
                json.dump(document, handle, indent=2, sort_keys=True)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(temp_path, self.path)
        except BaseException:
            temp_path.unlink(missing_ok=True)
            raise

    def load(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._read_document().get(key)

    def save(self, key: str, value: Any) -> None:
        with self._lock:
            document = self._read_document()
            document[key] = value
            self._write_document(document)
        self.logger.debug(f"Persisted key '{key}'")

    def delete(self, key: str) -> None:
        with self._lock:
            document = self._read_document()
            if key not in document:
                return
            del document[key]
            self._write_document(document)
        self.logger.debug(f"Deleted key '{key}'")
