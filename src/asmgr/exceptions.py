"""
Custom exceptions for asmgr.

Every error raised by the core derives from AsmgrError so the CLI and the
Controller can catch the whole family in one place. Soft errors
(state-machine violations) are shown to the user but never logged.
"""

from typing import Optional


class AsmgrError(Exception):
    """Base class for all asmgr errors."""


class SoftError(AsmgrError):
    """Expected, user-facing state violations. Not logged."""


class ConfigError(AsmgrError):
    """Stored state or config.yaml is missing, unparseable, or inconsistent."""


class MultiplexerUnavailable(AsmgrError):
    """The tmux binary cannot be found or executed."""


class MultiplexerError(AsmgrError):
    """A tmux invocation exited non-zero."""

    def __init__(self, message: str, stderr: str = "", command: Optional[list] = None):
        self.stderr = stderr.strip()
        self.command = command or []
        detail = f": {self.stderr}" if self.stderr else ""
        super().__init__(f"{message}{detail}")


class CommandTimeout(AsmgrError):
    """An external command exceeded its deadline and was killed."""

    def __init__(self, command: list, timeout: float):
        self.command = command
        self.timeout = timeout
        name = command[0] if command else "command"
        super().__init__(f"{name} timed out after {timeout:g}s")


class NotRunning(SoftError):
    """Operation requires a running session."""


class AlreadyRunning(SoftError):
    """Session is already running."""


class NotFound(AsmgrError):
    """Unknown session, window, instance, group, or project."""


class ParseError(AsmgrError):
    """A stored state file or agent history file is malformed."""

    def __init__(self, path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot parse {path}: {reason}")


class VCSError(AsmgrError):
    """git invocation failed (not a repository, bad revision, ...)."""


class StoreIOError(AsmgrError):
    """Reading or writing the state directory failed."""


class NotEmpty(AsmgrError):
    """Project still owns sessions and cascade was not requested."""


class InvariantViolation(AsmgrError):
    """Operation would break a model invariant (e.g. closing window 0)."""


class DuplicateName(AsmgrError):
    """A project or group with this name already exists."""


class ProjectLocked(AsmgrError):
    """Another live asmgr process owns the project."""

    def __init__(self, project_id: str, pid: int):
        self.project_id = project_id
        self.pid = pid
        super().__init__(f"Project '{project_id or 'default'}' is open in process {pid}")
