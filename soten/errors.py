"""Error handling framework for the soten controller."""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional, Iterable


class ErrorCategory(Enum):
    """Categories of errors for structured error handling."""
    SESSION = "session"
    FETCH = "fetch"
    SYNC = "sync"
    READ = "read"
    STATE = "state"
    VALIDATION = "validation"


class SotenError(Exception):
    """Base class for controller errors."""
    category = ErrorCategory.STATE


class SessionError(SotenError):
    """Missing or invalid credentials."""
    category = ErrorCategory.SESSION


class FetchError(SotenError):
    """Remote listing or lookup failed."""
    category = ErrorCategory.FETCH


class SyncError(SotenError):
    """Clone or pull of the mirror failed."""
    category = ErrorCategory.SYNC

    def __init__(self, message: str, error_code: str = "GIT_COMMAND_FAILED"):
        super().__init__(message)
        self.error_code = error_code


class ReadError(SotenError):
    """A single mirror file could not be read."""
    category = ErrorCategory.READ

    def __init__(self, path: str, reason: str):
        super().__init__(f"Failed to read {path}: {reason}")
        self.path = path
        self.reason = reason


class StateError(SotenError):
    """Required upstream state is missing."""
    category = ErrorCategory.STATE


@dataclass
class ErrorResponse:
    """Standardized error response format for tool operations."""
    error: str
    error_code: str
    message: str
    timestamp: str
    category: str
    context: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert error response to dictionary format."""
        result = {
            "error": self.error,
            "error_code": self.error_code,
            "message": self.message,
            "timestamp": self.timestamp,
            "category": self.category
        }
        if self.context:
            result["context"] = self.context
        return result


# Ordered: the first matching pattern wins
GIT_ERROR_PATTERNS = (
    ("authentication failed", "GIT_AUTH_REJECTED"),
    ("could not read username", "GIT_AUTH_REJECTED"),
    ("invalid username or password", "GIT_AUTH_REJECTED"),
    ("the requested url returned error: 401", "GIT_AUTH_REJECTED"),
    ("the requested url returned error: 403", "GIT_AUTH_REJECTED"),
    ("repository not found", "GIT_REPOSITORY_NOT_FOUND"),
    ("does not appear to be a git repository", "GIT_REPOSITORY_NOT_FOUND"),
    ("not possible to fast-forward", "GIT_NON_FAST_FORWARD"),
    ("non-fast-forward", "GIT_NON_FAST_FORWARD"),
    ("divergent branches", "GIT_NON_FAST_FORWARD"),
    ("could not resolve host", "GIT_NETWORK_ERROR"),
    ("connection refused", "GIT_NETWORK_ERROR"),
    ("connection timed out", "GIT_NETWORK_ERROR"),
    ("network is unreachable", "GIT_NETWORK_ERROR"),
    ("unable to access", "GIT_NETWORK_ERROR"),
)


def redact(text: str, secrets: Iterable[Optional[str]]) -> str:
    """Replace every non-empty secret in text with a placeholder."""
    for secret in secrets:
        if secret:
            text = text.replace(secret, "***")
    return text


class ErrorHandler:
    """Classifies and logs controller failures."""

    def __init__(self):
        self.logger = logging.getLogger('soten.error_handler')

    def classify_git_error(self, message: str) -> str:
        """Map a git failure message onto a sync error code."""
        lowered = message.lower()
        for pattern, error_code in GIT_ERROR_PATTERNS:
            if pattern in lowered:
                return error_code
        return "GIT_COMMAND_FAILED"

    def sync_error(self, error: Exception, operation: str, secrets: Iterable[Optional[str]] = ()) -> SyncError:
        """
        Build a SyncError from a failed git operation.

        Args:
            error: The exception raised by the git layer
            operation: Name of the mirror operation ("clone", "pull", ...)
            secrets: Values that must not appear in the resulting message

        Returns:
            SyncError carrying a redacted message and a classified error code
        """
        raw = redact(str(error), list(secrets))
        error_code = self.classify_git_error(raw)
        message = f"Git {operation} failed: {raw.strip()}"

        self.logger.warning(
            message,
            extra={
                'operation': f'git_{operation}',
                'error_code': error_code
            }
        )
        return SyncError(message, error_code)

    def handle_tool_error(self, error: Exception, context: Dict[str, Any] = None) -> ErrorResponse:
        """Turn an exception raised under a tool call into an ErrorResponse."""
        context = context or {}

        if isinstance(error, SyncError):
            error_code = error.error_code
            category = ErrorCategory.SYNC
        elif isinstance(error, SotenError):
            error_code = f"{error.category.value.upper()}_ERROR"
            category = error.category
        elif isinstance(error, ValueError):
            error_code = "VALIDATION_ERROR"
            category = ErrorCategory.VALIDATION
        else:
            error_code = "GENERAL_ERROR"
            category = ErrorCategory.STATE

        response = ErrorResponse(
            error="Operation failed",
            error_code=error_code,
            message=str(error),
            timestamp=datetime.now().isoformat(),
            category=category.value,
            context=context
        )

        self.logger.error(
            f"Tool error: {response.message}",
            extra={
                'operation': 'tool_error',
                'error_code': error_code
            }
        )

        return response


# Initialize global error handler
error_handler = ErrorHandler()
