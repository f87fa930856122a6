"""Startup sequence and fragment routing."""

import logging
from typing import Callable, List, Optional
from urllib.parse import parse_qs, urlsplit, urlunsplit

import httpx

from .dispatcher import Dispatcher
from .errors import FetchError
from .events import Authenticated, Event, Logout, ShowFront, ShowNote
from .github import GitHubClient
from .models import AppStatus, Session
from .store import AppStore

FragmentListener = Callable[[str], None]


class Location:
    """
    The address the application was opened with.

    Stands in for the browser location and history: the fragment carries OAuth
    redirect payloads and navigation targets, ``replace_state`` drops the
    fragment without a navigation, and ``set_fragment`` behaves like the user
    following an in-page link.
    """

    def __init__(self, url: str = "http://localhost/"):
        self._listeners: List[FragmentListener] = []
        self.load(url)

    def load(self, url: str) -> None:
        """Replace the whole address, as a fresh page load would."""
        parts = urlsplit(url)
        self._base = urlunsplit((parts.scheme, parts.netloc, parts.path or "/", parts.query, ""))
        self._fragment = parts.fragment

    @property
    def fragment(self) -> str:
        return self._fragment

    @property
    def url(self) -> str:
        return f"{self._base}#{self._fragment}" if self._fragment else self._base

    def replace_state(self) -> None:
        """Drop the fragment without notifying listeners."""
        self._fragment = ""

    def set_fragment(self, fragment: str) -> None:
        fragment = fragment[1:] if fragment.startswith("#") else fragment
        if fragment == self._fragment:
            return
        self._fragment = fragment
        for listener in list(self._listeners):
            listener(fragment)

    def add_listener(self, listener: FragmentListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove


DEFAULT_AUTH_ERROR = "Authentication failed"


def _fragment_params(fragment: str) -> dict:
    return {key: values[0] for key, values in parse_qs(fragment, keep_blank_values=True).items() if values}


def parse_auth_error(fragment: str) -> Optional[str]:
    """
    Return the decoded ``auth_error`` value of an OAuth failure redirect.

    A present but empty ``auth_error`` still marks a failure and yields "".
    """
    if not fragment:
        return None
    return _fragment_params(fragment).get("auth_error")


def parse_oauth_fragment(fragment: str) -> Optional[Session]:
    """Build a Session from an OAuth success redirect, or None if any field is missing."""
    if not fragment:
        return None

    params = _fragment_params(fragment)
    token = params.get("access_token")
    username = params.get("username")
    email = params.get("email")
    installation_id = params.get("app_install_id")

    if token and username and email and installation_id:
        return Session(username=username, token=token, installation_id=installation_id, email=email)
    return None


def route_event(fragment: str) -> Event:
    """Navigation event for a fragment: "/" (or nothing) is the front page, anything else a note."""
    if fragment in ("", "/"):
        return ShowFront()
    return ShowNote(path=fragment)


class Bootstrap:
    """
    Runs the startup sequence once per load and routes fragment changes.

    Startup checks, in order: an OAuth failure redirect, an OAuth success
    redirect, then a session persisted by an earlier run, which is re-validated
    against the remote user endpoint.
    """

    def __init__(self, store: AppStore, dispatcher: Dispatcher, github: GitHubClient, location: Location):
        self.store = store
        self.dispatcher = dispatcher
        self.github = github
        self.location = location
        self.logger = logging.getLogger('soten.bootstrap')
        self._running = False
        self._remove_listener: Optional[Callable[[], None]] = None

    async def init(self) -> None:
        """Run the startup sequence. A call made while one is in flight does nothing."""
        if self._running:
            self.logger.debug("Initialization already in progress, ignoring duplicate call")
            return

        self._running = True
        try:
            await self._init()
        finally:
            self._running = False

    async def _init(self) -> None:
        self.store.app_status.set(AppStatus.INITIALIZING)
        fragment = self.location.fragment

        auth_error = parse_auth_error(fragment)
        if auth_error is not None:
            auth_error = auth_error or DEFAULT_AUTH_ERROR
            self.logger.warning(f"Authentication failed: {auth_error}")
            self.store.auth_error.set(auth_error)
            self.location.replace_state()
            self.store.app_status.set(AppStatus.INITIALIZED)
            return

        session = parse_oauth_fragment(fragment)
        if session is not None:
            self.logger.info(f"OAuth redirect received for {session.username}")
            await self.dispatcher.dispatch(Authenticated.from_session(session))
            self.location.replace_state()
            self.store.app_status.set(AppStatus.INITIALIZED)
            return

        persisted = self.store.session.get()
        if persisted is not None and await self._validate(persisted):
            await self.dispatcher.dispatch(Authenticated.from_session(persisted))
        else:
            await self.dispatcher.dispatch(Logout())

        self.store.app_status.set(AppStatus.INITIALIZED)

        if self.location.fragment:
            await self.route()

    async def _validate(self, session: Session) -> bool:
        try:
            user = await self.github.get_current_user(session.token)
        except (FetchError, httpx.HTTPError) as e:
            self.logger.warning(f"Could not re-validate persisted session: {e}")
            return False

        if not user or not user.get("login"):
            self.logger.info("Persisted session is no longer valid")
            return False
        return True

    async def route(self) -> None:
        """Dispatch the navigation event for the current fragment."""
        await self.dispatcher.dispatch(route_event(self.location.fragment))

    def _on_fragment_change(self, fragment: str) -> None:
        self.dispatcher.dispatch_nowait(route_event(fragment))

    def attach(self) -> None:
        """Start routing later fragment changes (never re-running startup)."""
        if self._remove_listener is None:
            self._remove_listener = self.location.add_listener(self._on_fragment_change)

    def detach(self) -> None:
        if self._remove_listener is not None:
            self._remove_listener()
            self._remove_listener = None

    async def navigate(self, fragment: str) -> None:
        """Follow an in-page link and wait until the view has changed."""
        self.location.set_fragment(fragment)
        await self.dispatcher.drain()
        if self._remove_listener is None:
            await self.route()
