"""Wiring of the controller: store, collaborators, handlers, dispatcher and bootstrap."""

import logging
from typing import Any, Mapping, Optional, Union

from .bootstrap import Bootstrap, Location
from .config import Config
from .dispatcher import Dispatcher
from .events import Event, EventTag
from .github import GitHubClient
from .handlers import Handlers
from .mirror import GitMirror, MirrorStore
from .storage import JsonFileStore, KeyValueStore
from .store import AppStore


class SotenApp:
    """
    A fully wired controller instance.

    Collaborators can be injected so tests and embedders control persistence,
    network access and the mirror location.
    """

    def __init__(
        self,
        config: Config,
        backend: Optional[KeyValueStore] = None,
        github: Optional[GitHubClient] = None,
        mirror_store: Optional[MirrorStore] = None,
        git_mirror: Optional[GitMirror] = None,
        location: Optional[Location] = None,
    ):
        self.config = config
        self.logger = logging.getLogger('soten.init')

        self.store = AppStore(backend if backend is not None else JsonFileStore(config.state_file))
        self.github = github or GitHubClient(config)
        self.mirror_store = mirror_store or MirrorStore(config.mirror_root)
        self.git_mirror = git_mirror or GitMirror(self.mirror_store)
        self.location = location or Location()

        self.handlers = Handlers(self.store, self.github, self.mirror_store, self.git_mirror, config)
        self.dispatcher = Dispatcher(self.handlers.table(), max_chain_depth=config.max_chain_depth)
        self.bootstrap = Bootstrap(self.store, self.dispatcher, self.github, self.location)
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Run the startup sequence and begin routing fragment changes."""
        await self.bootstrap.init()
        self.bootstrap.attach()
        self._started = True

    async def ensure_started(self) -> None:
        if not self._started:
            await self.start()

    async def open_url(self, url: str) -> None:
        """Treat url as a fresh page load (e.g. the OAuth redirect target)."""
        self.location.load(url)
        await self.start()

    async def dispatch(self, event: Union[Event, EventTag, str], payload: Optional[Mapping[str, Any]] = None) -> None:
        await self.dispatcher.dispatch(event, payload)

    async def aclose(self) -> None:
        self.bootstrap.detach()
        await self.dispatcher.drain()
        await self.github.aclose()
        self.logger.info("Application closed")
