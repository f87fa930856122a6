#!/usr/bin/env python3
"""
Test suite for the startup sequence, fragment parsing and routing.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import httpx

from soten.app import SotenApp
from soten.bootstrap import (
    Bootstrap, Location, parse_auth_error, parse_oauth_fragment, route_event,
)
from soten.config import Config
from soten.dispatcher import Dispatcher
from soten.errors import FetchError
from soten.events import Authenticated, EventTag, Logout, ShowFront, ShowNote
from soten.models import AppStatus, AuthStatus, Session, TextFile, ViewMode
from soten.storage import MemoryStore
from soten.store import AppStore


SESSION = Session(username="octo", token="gho_secret", installation_id="42", email="octo@example.com")
OAUTH_FRAGMENT = "access_token=gho_secret&username=octo&email=octo%40example.com&app_install_id=42"


def create_test_bootstrap(url="http://localhost/", user=None, persisted=None):
    """Bootstrap over a recording dispatcher and a mocked user endpoint."""
    received = []

    async def record(event):
        received.append(event)

    store = AppStore(MemoryStore())
    if persisted is not None:
        store.session.set(persisted)

    github = MagicMock()
    if isinstance(user, Exception):
        github.get_current_user = AsyncMock(side_effect=user)
    else:
        github.get_current_user = AsyncMock(return_value=user)

    dispatcher = Dispatcher({tag: record for tag in EventTag})
    location = Location(url)
    return Bootstrap(store, dispatcher, github, location), store, received


def test_fragment_parsing():
    """Test parsing of OAuth redirect fragments and routes."""
    print("Testing fragment parsing")

    assert parse_oauth_fragment(OAUTH_FRAGMENT) == SESSION
    assert parse_oauth_fragment("access_token=t&username=octo&email=e") is None
    assert parse_oauth_fragment("") is None
    print("  ✓ OAuth session requires all four fields")

    assert parse_auth_error("auth_error=access%20denied") == "access denied"
    assert parse_auth_error(OAUTH_FRAGMENT) is None
    assert parse_auth_error("") is None
    assert parse_auth_error("auth_error=") == ""
    assert parse_auth_error("auth_error") == ""
    print("  ✓ Auth error decoded, blank value still recognised")

    assert route_event("") == ShowFront()
    assert route_event("/") == ShowFront()
    assert route_event("/soten/readme.md") == ShowNote(path="/soten/readme.md")
    print("  ✓ Routes resolved")


def test_location():
    """Test the location stand-in."""
    print("Testing Location")

    location = Location("https://notes.example.com/app#/soten/a.md")
    assert location.fragment == "/soten/a.md"
    assert location.url == "https://notes.example.com/app#/soten/a.md"

    seen = []
    remove = location.add_listener(seen.append)
    location.set_fragment("#/soten/b.md")
    location.set_fragment("/soten/b.md")
    assert seen == ["/soten/b.md"]
    print("  ✓ Listeners notified once per change")

    location.replace_state()
    assert location.fragment == ""
    assert location.url == "https://notes.example.com/app"
    assert seen == ["/soten/b.md"]
    print("  ✓ replace_state drops the fragment silently")

    remove()
    location.set_fragment("/x")
    assert seen == ["/soten/b.md"]


def test_init_with_auth_error():
    """Test that an OAuth failure redirect is surfaced and nothing else runs."""
    print("Testing auth error redirect")

    bootstrap, store, received = create_test_bootstrap(
        url="http://localhost/#auth_error=access_denied", persisted=SESSION
    )

    asyncio.run(bootstrap.init())

    assert store.auth_error.get() == "access_denied"
    assert bootstrap.location.fragment == ""
    assert store.app_status.get() is AppStatus.INITIALIZED
    assert received == []
    bootstrap.github.get_current_user.assert_not_awaited()
    print("  ✓ Auth error stored, no events dispatched")

    bootstrap, store, received = create_test_bootstrap(url="http://localhost/#auth_error=", persisted=SESSION)

    asyncio.run(bootstrap.init())

    assert store.auth_error.get() == "Authentication failed"
    assert bootstrap.location.fragment == ""
    assert received == []
    bootstrap.github.get_current_user.assert_not_awaited()
    print("  ✓ Blank auth error treated as a failed login")


def test_init_with_oauth_redirect():
    """Test that a success redirect authenticates without re-validation."""
    print("Testing OAuth success redirect")

    bootstrap, store, received = create_test_bootstrap(url=f"http://localhost/#{OAUTH_FRAGMENT}")

    asyncio.run(bootstrap.init())

    assert received == [Authenticated.from_session(SESSION)]
    assert bootstrap.location.fragment == ""
    assert "gho_secret" not in bootstrap.location.url
    assert store.app_status.get() is AppStatus.INITIALIZED
    bootstrap.github.get_current_user.assert_not_awaited()
    print("  ✓ Authenticated dispatched and fragment cleared")


def test_init_revalidates_persisted_session():
    """Test that a persisted session is checked against the user endpoint."""
    print("Testing persisted session re-validation")

    bootstrap, store, received = create_test_bootstrap(user={"login": "octo"}, persisted=SESSION)
    asyncio.run(bootstrap.init())

    bootstrap.github.get_current_user.assert_awaited_once_with("gho_secret")
    assert received == [Authenticated.from_session(SESSION)]
    assert store.app_status.get() is AppStatus.INITIALIZED
    print("  ✓ Valid session re-authenticated")

    failures = [None, {}, FetchError("Unexpected status code returned from user endpoint"),
                httpx.ConnectError("unreachable")]
    for failure in failures:
        bootstrap, store, received = create_test_bootstrap(user=failure, persisted=SESSION)
        asyncio.run(bootstrap.init())
        assert received == [Logout()], f"{failure!r} should log out"
        assert store.app_status.get() is AppStatus.INITIALIZED
    print(f"  ✓ {len(failures)} failure modes lead to Logout")


def test_init_without_session_logs_out():
    """Test the first start without any stored credentials."""
    print("Testing start without session")

    bootstrap, store, received = create_test_bootstrap()
    asyncio.run(bootstrap.init())

    assert received == [Logout()]
    bootstrap.github.get_current_user.assert_not_awaited()
    print("  ✓ Logout dispatched")


def test_init_routes_remaining_fragment():
    """Test that a navigation fragment present at load is routed after init."""
    print("Testing initial route")

    bootstrap, store, received = create_test_bootstrap(url="http://localhost/#/soten/readme.md")
    asyncio.run(bootstrap.init())

    assert received == [Logout(), ShowNote(path="/soten/readme.md")]
    print("  ✓ ShowNote dispatched after startup")


def test_init_is_not_reentrant():
    """Test that a second init while one is running does nothing."""
    print("Testing re-entrancy guard")

    bootstrap, store, received = create_test_bootstrap(persisted=SESSION)

    async def slow_user(token):
        await asyncio.sleep(0.01)
        return {"login": "octo"}

    bootstrap.github.get_current_user = AsyncMock(side_effect=slow_user)

    async def scenario():
        await asyncio.gather(bootstrap.init(), bootstrap.init())

    asyncio.run(scenario())

    assert bootstrap.github.get_current_user.await_count == 1
    assert received == [Authenticated.from_session(SESSION)]
    print("  ✓ Startup ran once")

    asyncio.run(bootstrap.init())
    assert bootstrap.github.get_current_user.await_count == 2
    print("  ✓ Guard released once startup finished")


def test_fragment_changes_route_after_attach():
    """Test that later fragment changes dispatch navigation events only."""
    print("Testing fragment routing")

    bootstrap, store, received = create_test_bootstrap()

    async def scenario():
        await bootstrap.init()
        bootstrap.attach()
        await bootstrap.navigate("/soten/a.md")
        await bootstrap.navigate("#/")
        await bootstrap.navigate("")
        bootstrap.detach()
        await bootstrap.navigate("/soten/b.md")

    asyncio.run(scenario())

    assert received == [
        Logout(),
        ShowNote(path="/soten/a.md"),
        ShowFront(),
        ShowFront(),
        ShowNote(path="/soten/b.md"),
    ]
    print("  ✓ Navigation events dispatched, startup not re-run")


def create_test_app(url="http://localhost/"):
    """SotenApp with in-memory persistence and mocked collaborators."""
    github = MagicMock()
    github.get_current_user = AsyncMock(return_value={"login": "octo"})
    github.list_installation_repositories = AsyncMock(return_value=["acme/notes"])
    github.aclose = AsyncMock()

    mirror_store = MagicMock()
    mirror_store.wipe = AsyncMock()
    mirror_store.list_files = AsyncMock(return_value=["/soten/readme.md"])
    mirror_store.read_file = AsyncMock(return_value=TextFile(content="# Notes"))

    git_mirror = MagicMock()
    git_mirror.is_initialized = AsyncMock(return_value=False)
    git_mirror.clone = AsyncMock()
    git_mirror.set_identity = AsyncMock()
    git_mirror.pull = AsyncMock()

    return SotenApp(
        Config(),
        backend=MemoryStore(),
        github=github,
        mirror_store=mirror_store,
        git_mirror=git_mirror,
        location=Location(url),
    )


def test_app_open_url_runs_login_chain():
    """Test the wired application from OAuth redirect to a ready repository."""
    print("Testing application wiring")

    app = create_test_app()

    async def scenario():
        await app.ensure_started()
        assert app.store.auth_status.get() is AuthStatus.UNAUTHENTICATED

        await app.open_url(f"http://localhost/#{OAUTH_FRAGMENT}")
        await app.bootstrap.navigate("/soten/readme.md")
        await app.aclose()

    asyncio.run(scenario())

    assert app.started
    assert app.store.session.get() == SESSION
    assert app.store.repo_ready.get() is True
    assert app.store.files.get() == {"/soten/readme.md": TextFile(content="# Notes")}
    assert app.store.view.get() is ViewMode.NOTE
    app.git_mirror.clone.assert_awaited_once_with("https://github.com/acme/notes.git", SESSION)
    app.github.aclose.assert_awaited_once()
    print("  ✓ Logged in, synced and navigated")


def run_all_tests():
    """Run all bootstrap tests."""
    print("Bootstrap Test Suite")
    print("=" * 50)

    tests = [
        test_fragment_parsing,
        test_location,
        test_init_with_auth_error,
        test_init_with_oauth_redirect,
        test_init_revalidates_persisted_session,
        test_init_without_session_logs_out,
        test_init_routes_remaining_fragment,
        test_init_is_not_reentrant,
        test_fragment_changes_route_after_attach,
        test_app_open_url_runs_login_chain,
    ]

    passed = 0
    for test in tests:
        try:
            test()
            passed += 1
        except Exception as e:
            print(f"  ✗ {test.__name__} failed: {e}")
        print()

    print("=" * 50)
    print(f"Results: {passed}/{len(tests)} tests passed")
    return passed == len(tests)


if __name__ == "__main__":
    success = run_all_tests()
    exit(0 if success else 1)
