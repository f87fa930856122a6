"""Operating system specifics: default locations, temp files and the git executable."""

import platform
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Dict, Any, Union


@dataclass(frozen=True)
class PlatformInfo:
    """The operating system soten is running on."""
    system: str

    @property
    def is_windows(self) -> bool:
        return self.system == "windows"


_platform_info: Optional[PlatformInfo] = None


def get_platform_info() -> PlatformInfo:
    """Get the detected platform, computed once per process."""
    global _platform_info
    if _platform_info is None:
        _platform_info = PlatformInfo(system=platform.system().lower())
    return _platform_info


def normalize_path(path: Union[str, Path]) -> Path:
    """Expand ``~`` and make path absolute."""
    return Path(path).expanduser().resolve()


def get_platform_specific_defaults() -> Dict[str, Any]:
    """
    Defaults that depend on the operating system.

    Returns:
        Dictionary with ``data_dir``, ``log_level`` and ``http_timeout``
    """
    defaults = {
        'data_dir': Path.home() / ".soten",
        'log_level': "INFO",
        'http_timeout': 10.0,
    }

    if get_platform_info().is_windows:
        # Antivirus scanning makes the first requests and git calls slow
        defaults['http_timeout'] = 20.0

    return defaults


def create_secure_temp_file(directory: Path, suffix: str = '.tmp') -> tuple[int, Path]:
    """
    Create a private temporary file next to the file it will replace.

    Keeping it in the same directory makes the final ``os.replace`` atomic.

    Returns:
        Tuple of (file_descriptor, file_path)
    """
    directory.mkdir(parents=True, exist_ok=True)
    fd, temp_path = tempfile.mkstemp(dir=str(directory), suffix=suffix)
    return fd, Path(temp_path)


def get_git_executable() -> str:
    """Name of the git executable GitPython and the tests invoke."""
    return "git.exe" if get_platform_info().is_windows else "git"


def validate_git_availability() -> tuple[bool, Optional[str]]:
    """
    Check that git can be run, since every mirror operation needs it.

    Returns:
        Tuple of (is_available, error_message)
    """
    git_cmd = get_git_executable()

    try:
        result = subprocess.run([git_cmd, "--version"], capture_output=True, text=True, timeout=10)
    except FileNotFoundError:
        return False, f"Git executable '{git_cmd}' not found"
    except subprocess.TimeoutExpired:
        return False, "Git command timed out"
    except OSError as e:
        return False, f"Error checking Git availability: {e}"

    if result.returncode != 0:
        return False, f"Git command failed: {result.stderr}"
    return True, None
