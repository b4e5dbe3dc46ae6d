"""
Real implementations of protocol interfaces.

RealSubprocess runs every external command (tmux, git, agent CLIs) as a
managed child with a deadline. subprocess.run owns the Popen handle in a
context manager, so a child killed on timeout never leaks its pipes.
"""

import subprocess
from typing import List, Optional

from .exceptions import CommandTimeout
from .logging_config import get_logger
from .protocols import CommandResult

logger = get_logger("subprocess")


class RealSubprocess:
    """Production implementation of SubprocessInterface."""

    def run(self, cmd: List[str], timeout: Optional[float] = None,
            cwd: Optional[str] = None) -> CommandResult:
        try:
            result = subprocess.run(
                cmd,
                timeout=timeout,
                cwd=cwd,
                capture_output=True,
                text=True,
                errors="replace",
                stdin=subprocess.DEVNULL,
            )
        except subprocess.TimeoutExpired as e:
            logger.debug("Killed %s after %ss", cmd[0], timeout)
            raise CommandTimeout(cmd, timeout or 0) from e
        return CommandResult(result.returncode, result.stdout, result.stderr)
