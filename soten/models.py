"""Data types shared by the state store, handlers and collaborators."""

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict, Optional, Union


class AppStatus(Enum):
    """Bootstrap progress."""
    INITIALIZING = "Initializing"
    INITIALIZED = "Initialized"


class AuthStatus(Enum):
    """Whether a session is held. Authenticated exactly when a Session is present."""
    UNAUTHENTICATED = "Unauthenticated"
    AUTHENTICATED = "Authenticated"


class ViewMode(Enum):
    """Which view the UI should show."""
    FRONT = "Front"
    NOTE = "Note"


@dataclass(frozen=True)
class Session:
    """Authenticated user credentials and identity."""
    username: str
    token: str
    installation_id: str
    email: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> Optional["Session"]:
        """Rebuild a persisted session, or None when data is absent or malformed."""
        if not isinstance(data, dict):
            return None
        try:
            session = cls(
                username=data["username"],
                token=data["token"],
                installation_id=data["installation_id"],
                email=data["email"],
            )
        except KeyError:
            return None
        if not all(isinstance(value, str) and value for value in asdict(session).values()):
            return None
        return session

    def __repr__(self) -> str:
        # Keep tokens out of logs
        return (
            f"Session(username={self.username!r}, token='***', "
            f"installation_id={self.installation_id!r}, email={self.email!r})"
        )


@dataclass(frozen=True)
class RepoRef:
    """A repository on the remote platform."""
    owner: str
    repo: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    @classmethod
    def parse(cls, full_name: str) -> "RepoRef":
        """Parse an "owner/repo" string."""
        owner, sep, repo = full_name.strip().partition("/")
        if not sep or not owner or not repo or "/" in repo:
            raise ValueError(f"Repository must be given as 'owner/repo', got {full_name!r}")
        return cls(owner=owner, repo=repo)

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> Optional["RepoRef"]:
        if not isinstance(data, dict):
            return None
        owner, repo = data.get("owner"), data.get("repo")
        if not isinstance(owner, str) or not isinstance(repo, str) or not owner or not repo:
            return None
        return cls(owner=owner, repo=repo)


@dataclass(frozen=True)
class TextFile:
    """A mirror file decoded as UTF-8 text."""
    content: str
    kind: str = "text"


@dataclass(frozen=True)
class ImageFile:
    """A mirror file kept as raw bytes with its MIME type."""
    content: bytes
    mime_type: str = "application/octet-stream"
    kind: str = "image"


FileEntry = Union[TextFile, ImageFile]
