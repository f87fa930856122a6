"""MCP server exposing the note viewer controller over stdio."""

import base64
import logging
import sys
from typing import Optional

from mcp.server.fastmcp import FastMCP

from . import __version__
from .app import SotenApp
from .config import Config, load_configuration, validate_configuration
from .errors import ReadError, SessionError, StateError, error_handler
from .events import SelectRepo
from .models import ImageFile, RepoRef


def setup_logging(config: Config) -> None:
    """Setup logging configuration with structured logging."""
    class StructuredFormatter(logging.Formatter):
        def format(self, record):
            if hasattr(record, 'operation'):
                record.msg = f"[{record.operation}] {record.msg}"
            return super().format(record)

    formatter = StructuredFormatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # stdout belongs to the MCP transport
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    logger = logging.getLogger('soten')
    logger.setLevel(getattr(logging, config.log_level))
    logger.handlers = [handler]
    logger.propagate = False


def register_tools(server: FastMCP, app: SotenApp) -> None:
    """Register MCP tools with the server instance."""

    @server.tool()
    async def status() -> dict:
        """
        Show the viewer state: login, repositories, selection and readiness.

        Returns:
            Dictionary with auth status, username, available repositories,
            selected repository, file count, readiness, current view and the
            last error message
        """
        await app.ensure_started()
        return app.store.snapshot()

    @server.tool()
    async def login_url(redirect_uri: str) -> dict:
        """
        Build the GitHub URL that starts the OAuth login.

        Args:
            redirect_uri: Callback URL of the code-exchange function
        """
        try:
            return {"url": app.github.authorize_url(redirect_uri)}
        except ValueError as e:
            return error_handler.handle_tool_error(e, {'tool': 'login_url'}).to_dict()

    @server.tool()
    async def open_url(url: str) -> dict:
        """
        Open the viewer at url, as a browser page load would.

        Use this with the address the OAuth callback redirected to; its fragment
        carries either the new session or an authentication error.
        """
        await app.open_url(url)
        return app.store.snapshot()

    @server.tool()
    async def navigate(path: str) -> dict:
        """
        Show a note ("/soten/readme.md") or the front page ("/").
        """
        await app.ensure_started()
        await app.bootstrap.navigate(path)
        return app.store.snapshot()

    @server.tool()
    async def select_repository(full_name: str) -> dict:
        """
        Select the repository to mirror, given as "owner/repo".

        Wipes the current mirror, clones the repository and loads its files.
        """
        await app.ensure_started()
        try:
            ref = RepoRef.parse(full_name)
        except ValueError as e:
            return error_handler.handle_tool_error(e, {'tool': 'select_repository'}).to_dict()

        if app.store.session.get() is None:
            return error_handler.handle_tool_error(
                SessionError("Log in before selecting a repository"), {'tool': 'select_repository'}
            ).to_dict()

        await app.dispatch(SelectRepo(owner=ref.owner, repo=ref.repo))
        return app.store.snapshot()

    @server.tool()
    async def logout() -> dict:
        """Forget the session and wipe the local mirror."""
        await app.ensure_started()
        await app.dispatch("Logout")
        return app.store.snapshot()

    @server.tool()
    async def list_notes() -> list:
        """List the paths of every file in the mirrored repository."""
        await app.ensure_started()
        return list(app.store.filenames.get())

    @server.tool()
    async def read_note(path: str) -> dict:
        """
        Return the content of a mirrored file.

        Text files are returned as text; images as base64 with their MIME type.
        """
        await app.ensure_started()
        context = {'tool': 'read_note', 'path': path}
        if not app.store.repo_ready.get():
            return error_handler.handle_tool_error(StateError("Repository is not ready"), context).to_dict()

        entry = app.store.files.get().get(path)
        if entry is None:
            return error_handler.handle_tool_error(ReadError(path, "not loaded"), context).to_dict()

        if isinstance(entry, ImageFile):
            return {
                "path": path,
                "kind": entry.kind,
                "mime_type": entry.mime_type,
                "size": len(entry.content),
                "content_base64": base64.b64encode(entry.content).decode("ascii"),
            }
        return {"path": path, "kind": entry.kind, "content": entry.content}

    logging.getLogger('soten.init').info("MCP tools registered successfully")


def initialize_server(config: Optional[Config] = None) -> FastMCP:
    """Initialize the MCP server with stdio transport."""
    server_config = config or load_configuration()
    setup_logging(server_config)
    init_logger = logging.getLogger('soten.init')

    validation_issues = validate_configuration(server_config)
    for issue in validation_issues:
        if issue.startswith("ERROR:"):
            init_logger.error(issue[7:])
        elif issue.startswith("WARNING:"):
            init_logger.warning(issue[9:])

    error_count = sum(1 for issue in validation_issues if issue.startswith("ERROR:"))
    if error_count > 0:
        raise RuntimeError(f"Server startup failed due to {error_count} configuration error(s)")

    init_logger.info("Configuration loaded successfully")

    app = SotenApp(server_config)
    server = FastMCP("Soten Notes")
    register_tools(server, app)

    init_logger.info("Soten MCP server initialized successfully")
    return server


def main():
    """Main entry point with stdio transport."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    startup_logger = logging.getLogger('soten.startup')
    startup_logger.info(f"Soten notes controller {__version__}")

    try:
        server = initialize_server()
        startup_logger.info("Starting server with stdio transport")
        server.run(transport="stdio")
    except KeyboardInterrupt:
        startup_logger.info("Server stopped by user (Ctrl+C)")
    except Exception as e:
        startup_logger.critical(f"Server failed to start: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
