#!/usr/bin/env python3
"""
Test suite for the MCP server: tool registration and tool behaviour against
an application whose collaborators are mocked.
"""

import asyncio
import base64
import logging
import tempfile
from unittest.mock import AsyncMock, MagicMock, patch

from mcp.server.fastmcp import FastMCP

from soten.app import SotenApp
from soten.bootstrap import Location
from soten.config import Config
from soten.models import ImageFile, TextFile
from soten.server import initialize_server, register_tools, setup_logging
from soten.storage import MemoryStore

OAUTH_FRAGMENT = "access_token=gho_secret&username=octo&email=octo%40example.com&app_install_id=42"
PNG_BYTES = b"\x89PNG\r\n\x1a\n"

EXPECTED_TOOLS = {
    "status", "login_url", "open_url", "navigate",
    "select_repository", "logout", "list_notes", "read_note",
}


def create_test_app():
    """Application with in-memory state, a mocked remote and a mocked mirror."""
    config = Config(github_client_id="Iv1.abc123")

    github = MagicMock()
    github.get_current_user = AsyncMock(return_value={"login": "octo"})
    github.list_installation_repositories = AsyncMock(return_value=["acme/notes"])
    github.authorize_url = MagicMock(side_effect=lambda redirect_uri: f"https://github.com/login/oauth/authorize?redirect_uri={redirect_uri}")

    files = {
        "/soten/readme.md": TextFile(content="# Notes"),
        "/soten/img/logo.png": ImageFile(content=PNG_BYTES, mime_type="image/png"),
    }
    mirror_store = MagicMock()
    mirror_store.wipe = AsyncMock()
    mirror_store.list_files = AsyncMock(return_value=list(files))
    mirror_store.read_file = AsyncMock(side_effect=lambda path: files[path])

    git_mirror = MagicMock()
    git_mirror.is_initialized = AsyncMock(return_value=False)
    git_mirror.clone = AsyncMock()
    git_mirror.set_identity = AsyncMock()
    git_mirror.pull = AsyncMock()

    return SotenApp(
        config,
        backend=MemoryStore(),
        github=github,
        mirror_store=mirror_store,
        git_mirror=git_mirror,
        location=Location(),
    )


def create_test_server():
    app = create_test_app()
    server = FastMCP("Test Server")
    register_tools(server, app)
    return server, app


async def call(server: FastMCP, name: str, **arguments):
    """Invoke a registered tool and return its raw result."""
    return await server._tool_manager.call_tool(name, arguments)


def test_tool_registration():
    """Test that every tool is registered."""
    print("Testing tool registration")

    server, _ = create_test_server()
    tools = asyncio.run(server.list_tools())

    assert {tool.name for tool in tools} == EXPECTED_TOOLS
    print(f"  ✓ {len(EXPECTED_TOOLS)} tools registered")


def test_login_and_read_notes():
    """Test the tool flow from OAuth redirect to reading notes."""
    print("Testing login and note access")

    server, app = create_test_server()

    async def scenario():
        status = await call(server, "status")
        assert status["auth_status"] == "Unauthenticated"
        assert status["app_status"] == "Initialized"

        not_ready = await call(server, "read_note", path="/soten/readme.md")
        assert not_ready["error_code"] == "STATE_ERROR"

        login = await call(server, "login_url", redirect_uri="https://notes.example.com/cb")
        assert login["url"].startswith("https://github.com/login/oauth/authorize")

        status = await call(server, "open_url", url=f"http://localhost/#{OAUTH_FRAGMENT}")
        assert status["auth_status"] == "Authenticated"
        assert status["username"] == "octo"
        assert status["selected_repo"] == "acme/notes"
        assert status["repo_ready"] is True

        notes = await call(server, "list_notes")
        assert notes == ["/soten/readme.md", "/soten/img/logo.png"]

        readme = await call(server, "read_note", path="/soten/readme.md")
        assert readme == {"path": "/soten/readme.md", "kind": "text", "content": "# Notes"}

        logo = await call(server, "read_note", path="/soten/img/logo.png")
        assert logo["kind"] == "image"
        assert logo["mime_type"] == "image/png"
        assert base64.b64decode(logo["content_base64"]) == PNG_BYTES

        missing = await call(server, "read_note", path="/soten/nope.md")
        assert missing["error_code"] == "READ_ERROR"

        status = await call(server, "navigate", path="/soten/readme.md")
        assert status["view"] == "Note"
        assert status["current_path"] == "/soten/readme.md"

        status = await call(server, "logout")
        assert status["auth_status"] == "Unauthenticated"
        assert status["file_count"] == 0

    asyncio.run(scenario())
    print("  ✓ Login, listing, reading, navigation and logout work")


def test_select_repository_tool():
    """Test manual repository selection and its validation."""
    print("Testing select_repository")

    server, app = create_test_server()

    async def scenario():
        invalid = await call(server, "select_repository", full_name="not-a-repo")
        assert invalid["error_code"] == "VALIDATION_ERROR"

        logged_out = await call(server, "select_repository", full_name="acme/wiki")
        assert logged_out["error_code"] == "SESSION_ERROR"
        app.git_mirror.clone.assert_not_awaited()

        await call(server, "open_url", url=f"http://localhost/#{OAUTH_FRAGMENT}")
        status = await call(server, "select_repository", full_name="acme/wiki")
        assert status["selected_repo"] == "acme/wiki"
        assert status["repo_ready"] is True

    asyncio.run(scenario())
    app.git_mirror.clone.assert_awaited_with("https://github.com/acme/wiki.git", app.store.session.get())
    print("  ✓ Invalid names and logged-out selection rejected, valid selection synced")


def test_setup_logging_prefixes_operation():
    """Test the structured log formatter."""
    print("Testing structured logging")

    with tempfile.TemporaryDirectory() as temp_dir:
        setup_logging(Config(data_dir=temp_dir, log_level="DEBUG"))

    logger = logging.getLogger('soten')
    assert logger.level == logging.DEBUG
    assert logger.propagate is False

    record = logging.LogRecord('soten.test', logging.INFO, __file__, 1, "Pulled", None, None)
    record.operation = 'git_pull'
    formatted = logger.handlers[0].formatter.format(record)
    assert "[git_pull] Pulled" in formatted
    print("  ✓ Operation prefix added")


def test_initialize_server():
    """Test server initialization from a configuration."""
    print("Testing server initialization")

    with tempfile.TemporaryDirectory() as temp_dir:
        with patch("soten.config.validate_git_availability", return_value=(True, None)):
            server = initialize_server(Config(data_dir=temp_dir, github_client_id="Iv1.abc123"))
        tools = asyncio.run(server.list_tools())
        assert {tool.name for tool in tools} == EXPECTED_TOOLS
        print("  ✓ Server initialized with all tools")

        with patch("soten.config.validate_git_availability", return_value=(False, "Git executable 'git' not found")):
            try:
                initialize_server(Config(data_dir=temp_dir))
                assert False, "Missing git should abort startup"
            except RuntimeError as e:
                assert "1 configuration error" in str(e)
        print("  ✓ Configuration errors abort startup")


def run_all_tests():
    """Run all server tests."""
    print("MCP Server Test Suite")
    print("=" * 50)

    tests = [
        test_tool_registration,
        test_login_and_read_notes,
        test_select_repository_tool,
        test_setup_logging_prefixes_operation,
        test_initialize_server,
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
