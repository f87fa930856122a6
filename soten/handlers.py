"""Event handlers of the session/synchronization controller."""

import asyncio
import logging
from typing import Dict, List, Optional, Tuple

from .config import Config
from .dispatcher import Handler
from .errors import ReadError, SyncError
from .events import (
    Authenticated, Error, Event, EventTag, FetchAndSelectRepos, FetchRepoFiles, Logout,
    ReadRepoFilesContent, RepoReady, SelectRepo, ShowFront, ShowNote,
)
from .github import GitHubClient
from .mirror import GitMirror, MirrorStore
from .models import AuthStatus, FileEntry, RepoRef, ViewMode
from .store import AppStore


class Handlers:
    """
    One coroutine per event.

    Each handler reads and writes the AppStore, calls the external
    collaborators, and returns the follow-on event for the dispatcher (or None
    when the chain ends). Handlers that await I/O capture the store generation
    first and drop their results when a newer chain has started meanwhile.
    """

    def __init__(
        self,
        store: AppStore,
        github: GitHubClient,
        mirror_store: MirrorStore,
        git_mirror: GitMirror,
        config: Config,
    ):
        self.store = store
        self.github = github
        self.mirror_store = mirror_store
        self.git_mirror = git_mirror
        self.config = config
        self.logger = logging.getLogger('soten.handlers')

    def table(self) -> Dict[EventTag, Handler]:
        """Handler lookup table for the dispatcher."""
        return {
            EventTag.AUTHENTICATED: self.authenticated,
            EventTag.LOGOUT: self.logout,
            EventTag.FETCH_AND_SELECT_REPOS: self.fetch_and_select_repos,
            EventTag.SELECT_REPO: self.select_repo,
            EventTag.FETCH_REPO_FILES: self.fetch_repo_files,
            EventTag.READ_REPO_FILES_CONTENT: self.read_repo_files_content,
            EventTag.REPO_READY: self.repo_ready,
            EventTag.SHOW_NOTE: self.show_note,
            EventTag.SHOW_FRONT: self.show_front,
            EventTag.ERROR: self.error,
        }

    def _stale(self, generation: int, step: str) -> bool:
        if self.store.is_current(generation):
            return False
        self.logger.info(
            f"Discarding stale {step} result (generation {generation}, current {self.store.generation})",
            extra={'operation': 'stale_result'}
        )
        return True

    def _clear_repo_contents(self) -> None:
        """Forget everything loaded from the mirror of the previous selection."""
        self.store.filenames.reset()
        self.store.files.reset()
        self.store.repo_ready.reset()

    async def authenticated(self, event: Authenticated) -> Event:
        self.store.begin_generation()
        self.store.session.set(event.session)
        self.store.auth_status.set(AuthStatus.AUTHENTICATED)
        self.store.auth_error.set(None)
        # Repositories are re-listed for the new session
        self.store.repos.reset()
        self._clear_repo_contents()
        self.logger.info(f"Authenticated as {event.username}")
        return FetchAndSelectRepos()

    async def fetch_and_select_repos(self, event: FetchAndSelectRepos) -> Optional[Event]:
        """
        Load the repositories the session may access and decide what to sync.

        A cached selection that is still accessible resumes syncing directly. A
        cached selection that is no longer listed is dropped without surfacing
        an error. A sole repository is selected automatically; otherwise the
        chain stops and waits for a manual SelectRepo.
        """
        session = self.store.session.get()
        if session is None:
            return Error(message="Invalid installationId or token", event=event.tag)

        generation = self.store.generation
        repos = await self.github.list_installation_repositories(session.installation_id, session.token)
        if self._stale(generation, "repository listing"):
            return None

        if repos is None:
            return Error(message="Failed to fetch repos", event=event.tag)

        if not repos:
            return Error(message="No repos found", event=event.tag)

        self.store.repos.set(list(repos))
        self.store.error.set(None)

        cached = self.store.selected_repo.get()
        if cached is not None:
            if cached.full_name in repos:
                self.logger.info(f"Resuming cached repository {cached.full_name}")
                return FetchRepoFiles()

            self.logger.warning(f"Cached repository {cached.full_name} is no longer accessible, clearing selection")
            self.store.selected_repo.set(None)
            self._clear_repo_contents()
            await self.mirror_store.wipe()
            if self._stale(generation, "mirror wipe"):
                return None

        if len(repos) == 1:
            try:
                ref = RepoRef.parse(repos[0])
            except ValueError as e:
                return Error(message=str(e), event=event.tag)
            return SelectRepo(owner=ref.owner, repo=ref.repo)

        self.logger.info(f"{len(repos)} repositories available, waiting for selection")
        return None

    async def select_repo(self, event: SelectRepo) -> Event:
        self.store.begin_generation()
        self.store.selected_repo.set(event.ref)
        self._clear_repo_contents()
        self.store.error.set(None)
        await self.mirror_store.wipe()
        self.logger.info(f"Selected repository {event.ref.full_name}")
        return FetchRepoFiles()

    async def fetch_repo_files(self, event: FetchRepoFiles) -> Optional[Event]:
        selected = self.store.selected_repo.get()
        session = self.store.session.get()

        if selected is None or session is None:
            return Error(message="Invalid state when fetching files", event=event.tag)

        generation = self.store.generation
        try:
            if await self.git_mirror.is_initialized():
                await self.git_mirror.pull(session)
            else:
                await self.git_mirror.clone(self.config.remote_url(selected.owner, selected.repo), session)
                await self.git_mirror.set_identity(session.username, session.email)
        except SyncError as e:
            if self._stale(generation, "sync"):
                return None
            return Error(message=str(e), event=event.tag)

        if self._stale(generation, "sync"):
            return None

        filenames = await self.mirror_store.list_files()
        if self._stale(generation, "file listing"):
            return None

        self.store.filenames.set(filenames)
        return ReadRepoFilesContent()

    async def _read_one(self, path: str) -> Tuple[str, Optional[FileEntry]]:
        try:
            return path, await self.mirror_store.read_file(path)
        except ReadError as e:
            self.logger.warning(str(e), extra={'operation': 'read_file'})
            return path, None

    async def read_repo_files_content(self, event: ReadRepoFilesContent) -> Optional[Event]:
        generation = self.store.generation
        filenames: List[str] = list(self.store.filenames.get())

        results = await asyncio.gather(*(self._read_one(path) for path in filenames))
        if self._stale(generation, "file contents"):
            return None

        files = {path: entry for path, entry in results if entry is not None}
        self.store.files.set(files)
        self.store.repo_ready.set(True)
        self.store.error.set(None)
        self.logger.info(f"Loaded {len(files)} of {len(filenames)} file(s)")
        return RepoReady()

    async def repo_ready(self, event: RepoReady) -> None:
        selected = self.store.selected_repo.get()
        self.logger.info(f"Repository {selected.full_name if selected else '?'} is ready")

    async def logout(self, event: Logout) -> None:
        self.store.begin_generation()
        self.store.session.set(None)
        self.store.auth_status.set(AuthStatus.UNAUTHENTICATED)
        self.store.selected_repo.set(None)
        self.store.repos.reset()
        self._clear_repo_contents()
        self.store.error.set(None)
        self.store.view.set(ViewMode.FRONT)
        await self.mirror_store.wipe()
        self.logger.info("Logged out")

    async def show_note(self, event: ShowNote) -> None:
        self.store.current_path.set(event.path)
        self.store.view.set(ViewMode.NOTE)

    async def show_front(self, event: ShowFront) -> None:
        self.store.current_path.set("/")
        self.store.view.set(ViewMode.FRONT)

    async def error(self, event: Error) -> None:
        source = f" ({event.event.value})" if event.event else ""
        self.logger.warning(f"Error{source}: {event.message}")
        self.store.error.set(event.message)
