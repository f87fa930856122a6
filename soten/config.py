"""Configuration management for the soten note viewer."""

import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, List
from urllib.parse import urlparse

from dotenv import load_dotenv

from .platform import get_platform_specific_defaults, normalize_path, validate_git_availability

load_dotenv()  # Load .env file if it exists

MIRROR_REPO_NAME = "soten"


@dataclass
class Config:
    """Configuration class for soten with validation and defaults."""

    # Remote platform
    git_host: str = "github.com"
    api_base_url: str = "https://api.github.com"
    github_client_id: Optional[str] = None
    http_timeout: float = 10.0

    # Storage
    data_dir: Path = field(default_factory=lambda: Path.home() / ".soten")

    # Logging
    log_level: str = "INFO"

    # Event chain guard
    max_chain_depth: int = 16

    def __post_init__(self):
        """Validate configuration after initialization."""
        if isinstance(self.data_dir, str):
            self.data_dir = Path(self.data_dir)
        self.data_dir = normalize_path(self.data_dir)

        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level.upper() not in valid_log_levels:
            raise ValueError(f"Invalid log level: {self.log_level}. Must be one of {valid_log_levels}")
        self.log_level = self.log_level.upper()

        if not self.git_host or "/" in self.git_host:
            raise ValueError(f"git_host must be a bare host name, got {self.git_host!r}")

        self.api_base_url = self.api_base_url.rstrip("/")

        if self.http_timeout <= 0:
            raise ValueError("http_timeout must be positive")

        if self.max_chain_depth <= 0:
            raise ValueError("max_chain_depth must be positive")

    @property
    def state_file(self) -> Path:
        """JSON document backing the persisted session and repository selection."""
        return self.data_dir / "state.json"

    @property
    def mirror_root(self) -> Path:
        """Root of the local mirror store."""
        return self.data_dir / "mirror"

    def remote_url(self, owner: str, repo: str) -> str:
        """Clone URL for a repository on the configured host."""
        return f"https://{self.git_host}/{owner}/{repo}.git"


def load_configuration() -> Config:
    """Load configuration from environment variables with platform-specific defaults."""
    try:
        platform_defaults = get_platform_specific_defaults()

        return Config(
            git_host=os.getenv("SOTEN_GIT_HOST", "github.com"),
            api_base_url=os.getenv("SOTEN_API_URL", "https://api.github.com"),
            github_client_id=os.getenv("SOTEN_GH_CLIENT_ID"),
            http_timeout=float(os.getenv("SOTEN_HTTP_TIMEOUT", str(platform_defaults['http_timeout']))),
            data_dir=Path(os.getenv("SOTEN_DATA_DIR", str(platform_defaults['data_dir']))),
            log_level=os.getenv("SOTEN_LOG_LEVEL", platform_defaults['log_level']).upper(),
            max_chain_depth=int(os.getenv("SOTEN_MAX_CHAIN_DEPTH", "16"))
        )
    except (ValueError, TypeError) as e:
        raise ValueError(f"Configuration error: {e}")


def validate_configuration(config: Config) -> List[str]:
    """Validate configuration and return any errors or warnings."""
    errors = []

    # Check data directory permissions
    try:
        config.mirror_root.mkdir(parents=True, exist_ok=True)
        test_file = config.data_dir / ".test_write"
        test_file.write_text("test")
        test_file.unlink()
    except PermissionError:
        errors.append(f"ERROR: No write permission for data directory: {config.data_dir}")
    except OSError as e:
        errors.append(f"ERROR: Cannot access data directory {config.data_dir}: {e}")

    parsed = urlparse(config.api_base_url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        errors.append(f"ERROR: API base URL is not a valid http(s) URL: {config.api_base_url}")
    elif parsed.scheme == "http":
        errors.append(f"WARNING: API base URL is not using HTTPS: {config.api_base_url}")

    if not config.github_client_id:
        errors.append("WARNING: SOTEN_GH_CLIENT_ID is not set, login URLs cannot be generated")

    git_available, git_error = validate_git_availability()
    if not git_available:
        errors.append(f"ERROR: {git_error}")

    if errors:
        logging.getLogger('soten.config').debug(f"Configuration validation found {len(errors)} issue(s)")

    return errors
