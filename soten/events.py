"""Event taxonomy and transition table of the controller state machine."""

from dataclasses import MISSING, dataclass, fields
from enum import Enum
from typing import Any, ClassVar, Dict, FrozenSet, Mapping, Optional, Type, Union

from .models import RepoRef, Session


class EventTag(str, Enum):
    """Tags of every event the dispatcher understands."""
    AUTHENTICATED = "Authenticated"
    LOGOUT = "Logout"
    FETCH_AND_SELECT_REPOS = "FetchAndSelectRepos"
    SELECT_REPO = "SelectRepo"
    FETCH_REPO_FILES = "FetchRepoFiles"
    READ_REPO_FILES_CONTENT = "ReadRepoFilesContent"
    REPO_READY = "RepoReady"
    SHOW_NOTE = "ShowNote"
    SHOW_FRONT = "ShowFront"
    ERROR = "Error"


class InvalidEventPayload(ValueError):
    """The payload does not match the shape declared for the event tag."""


@dataclass(frozen=True)
class Authenticated:
    username: str
    token: str
    installation_id: str
    email: str
    tag: ClassVar[EventTag] = EventTag.AUTHENTICATED

    @classmethod
    def from_session(cls, session: Session) -> "Authenticated":
        return cls(session.username, session.token, session.installation_id, session.email)

    @property
    def session(self) -> Session:
        return Session(self.username, self.token, self.installation_id, self.email)

    def __repr__(self) -> str:
        return f"Authenticated(username={self.username!r}, installation_id={self.installation_id!r})"


@dataclass(frozen=True)
class Logout:
    tag: ClassVar[EventTag] = EventTag.LOGOUT


@dataclass(frozen=True)
class FetchAndSelectRepos:
    tag: ClassVar[EventTag] = EventTag.FETCH_AND_SELECT_REPOS


@dataclass(frozen=True)
class SelectRepo:
    owner: str
    repo: str
    tag: ClassVar[EventTag] = EventTag.SELECT_REPO

    @property
    def ref(self) -> RepoRef:
        return RepoRef(self.owner, self.repo)


@dataclass(frozen=True)
class FetchRepoFiles:
    tag: ClassVar[EventTag] = EventTag.FETCH_REPO_FILES


@dataclass(frozen=True)
class ReadRepoFilesContent:
    tag: ClassVar[EventTag] = EventTag.READ_REPO_FILES_CONTENT


@dataclass(frozen=True)
class RepoReady:
    tag: ClassVar[EventTag] = EventTag.REPO_READY


@dataclass(frozen=True)
class ShowNote:
    path: str
    tag: ClassVar[EventTag] = EventTag.SHOW_NOTE


@dataclass(frozen=True)
class ShowFront:
    tag: ClassVar[EventTag] = EventTag.SHOW_FRONT


@dataclass(frozen=True)
class Error:
    message: str
    event: Optional[EventTag] = None
    tag: ClassVar[EventTag] = EventTag.ERROR


Event = Union[
    Authenticated, Logout, FetchAndSelectRepos, SelectRepo, FetchRepoFiles,
    ReadRepoFilesContent, RepoReady, ShowNote, ShowFront, Error,
]

EVENT_TYPES: Dict[EventTag, Type] = {
    cls.tag: cls for cls in (
        Authenticated, Logout, FetchAndSelectRepos, SelectRepo, FetchRepoFiles,
        ReadRepoFilesContent, RepoReady, ShowNote, ShowFront, Error,
    )
}

# Permitted follow-on events per handler. Error may follow any event but itself.
TRANSITIONS: Dict[EventTag, FrozenSet[EventTag]] = {
    EventTag.AUTHENTICATED: frozenset({EventTag.FETCH_AND_SELECT_REPOS}),
    EventTag.LOGOUT: frozenset(),
    EventTag.FETCH_AND_SELECT_REPOS: frozenset({EventTag.SELECT_REPO, EventTag.FETCH_REPO_FILES}),
    EventTag.SELECT_REPO: frozenset({EventTag.FETCH_REPO_FILES}),
    EventTag.FETCH_REPO_FILES: frozenset({EventTag.READ_REPO_FILES_CONTENT}),
    EventTag.READ_REPO_FILES_CONTENT: frozenset({EventTag.REPO_READY}),
    EventTag.REPO_READY: frozenset(),
    EventTag.SHOW_NOTE: frozenset(),
    EventTag.SHOW_FRONT: frozenset(),
    EventTag.ERROR: frozenset(),
}


def is_permitted(source: EventTag, target: EventTag) -> bool:
    """Whether the handler for source may emit target."""
    if target is EventTag.ERROR:
        return source is not EventTag.ERROR
    return target in TRANSITIONS.get(source, frozenset())


def make_event(tag: Union[EventTag, str], payload: Optional[Mapping[str, Any]] = None) -> Event:
    """
    Build the event variant for tag from a payload mapping.

    Raises:
        ValueError: tag is not a known event
        InvalidEventPayload: payload has missing, unknown or mistyped fields
    """
    tag = EventTag(tag) if not isinstance(tag, EventTag) else tag
    cls = EVENT_TYPES[tag]
    payload = dict(payload or {})

    declared = {f.name: f for f in fields(cls)}
    unknown = set(payload) - set(declared)
    if unknown:
        raise InvalidEventPayload(f"{tag.value} does not accept field(s): {', '.join(sorted(unknown))}")

    required = {
        name for name, f in declared.items()
        if f.default is MISSING and f.default_factory is MISSING
    }
    missing = required - set(payload)
    if missing:
        raise InvalidEventPayload(f"{tag.value} requires field(s): {', '.join(sorted(missing))}")

    if tag is EventTag.ERROR and payload.get("event") is not None:
        try:
            payload["event"] = EventTag(payload["event"])
        except ValueError:
            raise InvalidEventPayload(f"Unknown source event: {payload['event']!r}")

    for name, value in payload.items():
        if name != "event" and not isinstance(value, str):
            raise InvalidEventPayload(f"{tag.value}.{name} must be a string")

    return cls(**payload)
