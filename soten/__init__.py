"""
Soten - a note viewer controller backed by a git-mirrored GitHub repository.

This package keeps the session, repository selection and a local mirror of the
selected repository in sync, and exposes the result through the Model Context
Protocol (MCP).
"""

__version__ = "1.0.0"
__author__ = "Soten Team"
__description__ = "Note viewer controller syncing a GitHub repository into a local mirror"

from .server import main

__all__ = ["main"]
