"""Repository synchronization of the local mirror using GitPython."""

import asyncio
import logging
import shutil
from urllib.parse import quote, urlsplit, urlunsplit

from git import Repo, GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from ..errors import ErrorHandler, SyncError, error_handler as default_error_handler
from ..models import Session
from .store import MirrorStore


def authenticated_url(url: str, session: Session) -> str:
    """
    Embed the session credentials in an http(s) remote URL.

    Other URLs (local paths, file:// remotes) are returned unchanged.
    """
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https"):
        return url

    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    credentials = f"{quote(session.username, safe='')}:{quote(session.token, safe='')}"
    return urlunsplit((parts.scheme, f"{credentials}@{host}", parts.path, parts.query, parts.fragment))


def _secrets(session: Session) -> tuple:
    return (session.token, quote(session.token, safe=""))


class GitMirror:
    """
    Clone and pull the selected repository into the mirror store.

    All operations run GitPython in a worker thread while holding the store
    lock. Failures are raised as SyncError with credentials removed from the
    message.
    """

    def __init__(self, store: MirrorStore, error_handler: ErrorHandler = default_error_handler):
        """
        Initialize the mirror.

        Args:
            store: Mirror store whose repository directory is synchronized
            error_handler: Classifier used to turn git failures into SyncErrors
        """
        self.store = store
        self.error_handler = error_handler
        self.logger = logging.getLogger('soten.mirror.git')

    @property
    def repo_dir(self):
        return self.store.repo_dir

    def _open(self) -> Repo:
        return Repo(self.repo_dir)

    def _is_initialized(self) -> bool:
        if not (self.repo_dir / ".git").exists():
            return False
        try:
            self._open()
        except (InvalidGitRepositoryError, NoSuchPathError):
            return False
        return True

    async def is_initialized(self) -> bool:
        """Check whether a usable clone exists in the mirror."""
        return await asyncio.to_thread(self._is_initialized)

    def _clone(self, url: str, session: Session) -> None:
        self.store.root.mkdir(parents=True, exist_ok=True)
        if self.repo_dir.exists():
            # Leftovers from an interrupted clone would make git refuse the target
            shutil.rmtree(self.repo_dir)

        self.logger.info(f"Cloning repository from {url}")
        try:
            repo = Repo.clone_from(
                authenticated_url(url, session),
                self.repo_dir,
                depth=1,
                single_branch=True
            )
            # Keep the token out of .git/config
            repo.remotes.origin.set_url(url)
        except GitCommandError as e:
            shutil.rmtree(self.repo_dir, ignore_errors=True)
            raise self.error_handler.sync_error(e, "clone", secrets=_secrets(session))

        self.logger.info(f"Repository cloned successfully from {url}")

    async def clone(self, url: str, session: Session) -> None:
        """
        Shallow-clone url (depth 1, single branch) into the mirror.

        Raises:
            SyncError: the clone failed; the partial mirror has been removed
        """
        async with self.store.lock:
            await asyncio.to_thread(self._clone, url, session)

    def _pull(self, session: Session) -> None:
        try:
            repo = self._open()
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            raise SyncError(f"Git pull failed: no mirror at {self.repo_dir} ({e})", "GIT_NO_MIRROR")

        try:
            origin_url = repo.remotes.origin.url
            self.logger.info(f"Pulling changes from {origin_url}")
            repo.git.pull(authenticated_url(origin_url, session), ff_only=True)
        except (GitCommandError, AttributeError, IndexError, ValueError) as e:
            raise self.error_handler.sync_error(e, "pull", secrets=_secrets(session))

        self.logger.info("Mirror is up to date with remote")

    async def pull(self, session: Session) -> None:
        """
        Fast-forward the mirror to the remote head.

        Raises:
            SyncError: authentication, network, or non-fast-forward failure
        """
        async with self.store.lock:
            await asyncio.to_thread(self._pull, session)

    def _set_identity(self, name: str, email: str) -> None:
        try:
            repo = self._open()
            with repo.config_writer() as config_writer:
                config_writer.set_value("user", "name", name)
                config_writer.set_value("user", "email", email)
        except (InvalidGitRepositoryError, NoSuchPathError, OSError) as e:
            raise self.error_handler.sync_error(e, "config")

        self.logger.debug(f"Mirror identity set to {name} <{email}>")

    async def set_identity(self, name: str, email: str) -> None:
        """Configure user.name and user.email of the mirror."""
        async with self.store.lock:
            await asyncio.to_thread(self._set_identity, name, email)
