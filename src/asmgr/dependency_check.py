"""
Dependency checking for the external binaries asmgr drives.

tmux is required at startup; git is only needed for diffs, so a missing git
degrades the Diff tab instead of refusing to start.
"""

import shutil
import subprocess
from typing import Optional, Tuple

from .exceptions import MultiplexerUnavailable, VCSError


def find_executable(name: str) -> Optional[str]:
    return shutil.which(name)


def _version(argv) -> Optional[str]:
    try:
        result = subprocess.run(argv, capture_output=True, text=True, timeout=5)
    except (subprocess.SubprocessError, OSError):
        return None
    return result.stdout.strip() if result.returncode == 0 else None


def check_tmux() -> Tuple[bool, Optional[str], Optional[str]]:
    """Check if tmux is available and get its version.

    Returns:
        Tuple of (is_available, path, version)
    """
    path = find_executable("tmux")
    if not path:
        return False, None, None
    return True, path, _version(["tmux", "-V"])


def check_git() -> Tuple[bool, Optional[str], Optional[str]]:
    path = find_executable("git")
    if not path:
        return False, None, None
    return True, path, _version(["git", "--version"])


def require_tmux() -> str:
    """Ensure tmux is available.

    Raises:
        MultiplexerUnavailable: If tmux is not found
    """
    available, path, _ = check_tmux()
    if not available:
        raise MultiplexerUnavailable(
            "tmux is required but not found. "
            "Install it with: brew install tmux (macOS) or apt install tmux (Linux)"
        )
    return path


def require_git() -> str:
    available, path, _ = check_git()
    if not available:
        raise VCSError(
            "git is required for diffs but not found. "
            "Install it with: brew install git (macOS) or apt install git (Linux)"
        )
    return path
