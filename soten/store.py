"""Shared state cells for the controller."""

import logging
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

from .models import AppStatus, AuthStatus, FileEntry, RepoRef, Session, ViewMode
from .storage import KeyValueStore, MemoryStore

T = TypeVar("T")

Listener = Callable[[Any], None]

SESSION_KEY = "session"
SELECTED_REPO_KEY = "selected_repo"


class StateCell(Generic[T]):
    """A named value that notifies subscribers when it changes."""

    def __init__(self, name: str, default: T):
        self.name = name
        self._default = default
        self._value = default
        self._listeners: List[Listener] = []

    def get(self) -> T:
        return self._value

    def set(self, value: T) -> None:
        if value == self._value:
            return
        self._value = value
        self._notify(value)

    def reset(self) -> None:
        """Restore the default value."""
        self.set(self._default)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register listener; the returned callable unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, value: T) -> None:
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception:
                logging.getLogger('soten.store').exception(f"Listener for '{self.name}' failed")

    def __repr__(self) -> str:
        return f"StateCell({self.name!r}, {self._value!r})"


class PersistentCell(StateCell[Optional[T]]):
    """A cell whose value is loaded from and written through to a KeyValueStore."""

    def __init__(
        self,
        name: str,
        backend: KeyValueStore,
        key: str,
        encode: Callable[[T], Any],
        decode: Callable[[Any], Optional[T]],
    ):
        super().__init__(name, None)
        self.backend = backend
        self.key = key
        self._encode = encode
        self._value = decode(backend.load(key))

    def set(self, value: Optional[T]) -> None:
        if value == self._value:
            return
        if value is None:
            self.backend.delete(self.key)
        else:
            self.backend.save(self.key, self._encode(value))
        self._value = value
        self._notify(value)


class AppStore:
    """
    Explicit container for every piece of controller state.

    Handlers receive the store by reference; nothing else mutates it. The
    ``generation`` counter tags the current sync chain so that results of a
    superseded chain can be recognised and dropped.
    """

    def __init__(self, backend: Optional[KeyValueStore] = None):
        self.backend = backend if backend is not None else MemoryStore()

        self.app_status: StateCell[AppStatus] = StateCell("app_status", AppStatus.INITIALIZING)
        self.auth_status: StateCell[AuthStatus] = StateCell("auth_status", AuthStatus.UNAUTHENTICATED)
        self.session: PersistentCell[Session] = PersistentCell(
            "session", self.backend, SESSION_KEY, Session.to_dict, Session.from_dict
        )
        self.auth_error: StateCell[Optional[str]] = StateCell("auth_error", None)
        self.error: StateCell[Optional[str]] = StateCell("error", None)
        self.repos: StateCell[List[str]] = StateCell("repos", [])
        self.selected_repo: PersistentCell[RepoRef] = PersistentCell(
            "selected_repo", self.backend, SELECTED_REPO_KEY, RepoRef.to_dict, RepoRef.from_dict
        )
        self.filenames: StateCell[List[str]] = StateCell("filenames", [])
        self.files: StateCell[Dict[str, FileEntry]] = StateCell("files", {})
        self.repo_ready: StateCell[bool] = StateCell("repo_ready", False)
        self.view: StateCell[ViewMode] = StateCell("view", ViewMode.FRONT)
        self.current_path: StateCell[str] = StateCell("current_path", "/")

        self.generation = 0

    def begin_generation(self) -> int:
        """Start a new sync chain generation and return it."""
        self.generation += 1
        return self.generation

    def is_current(self, generation: int) -> bool:
        return generation == self.generation

    def cells(self) -> Dict[str, StateCell]:
        return {
            name: value for name, value in vars(self).items()
            if isinstance(value, StateCell)
        }

    def subscribe(self, name: str, listener: Listener) -> Callable[[], None]:
        """Subscribe to a cell by name."""
        cells = self.cells()
        if name not in cells:
            raise KeyError(f"Unknown state cell: {name}")
        return cells[name].subscribe(listener)

    def snapshot(self) -> Dict[str, Any]:
        """A JSON-friendly view of the state, without credentials or file bodies."""
        session = self.session.get()
        selected = self.selected_repo.get()
        return {
            "app_status": self.app_status.get().value,
            "auth_status": self.auth_status.get().value,
            "username": session.username if session else None,
            "auth_error": self.auth_error.get(),
            "error": self.error.get(),
            "repos": list(self.repos.get()),
            "selected_repo": selected.full_name if selected else None,
            "file_count": len(self.filenames.get()),
            "repo_ready": self.repo_ready.get(),
            "view": self.view.get().value,
            "current_path": self.current_path.get(),
            "generation": self.generation,
        }
