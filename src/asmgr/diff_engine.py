"""
Working-tree diffs through git.

Two modes:

- full:    working tree vs HEAD (staged and unstaged changes)
- session: working tree vs the revision recorded when the session started

If the recorded revision is gone (history rewritten, shallow clone) the
session diff falls back to full mode and says so in DiffResult.note.
The unified diff text is returned as git printed it; colorizing is the
presentation layer's job.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple

from .exceptions import VCSError
from .implementations import RealSubprocess
from .logging_config import get_logger
from .protocols import CommandResult, SubprocessInterface
from .settings import TIMING
from .status_constants import DIFF_MODE_FULL, DIFF_MODE_SESSION

logger = get_logger("diff")

GIT_BINARY = "git"
# git's well-known empty tree, used as the base before the first commit
EMPTY_TREE = "4b825dc642cb6eb9a060e54bf8d69288fbee4904"


@dataclass
class DiffResult:
    added: int = 0
    removed: int = 0
    content: str = ""
    error: Optional[str] = None
    mode: str = DIFF_MODE_FULL
    note: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.content.strip()


def count_changes(content: str) -> Tuple[int, int]:
    """Count added/removed lines inside hunks, ignoring file headers."""
    added = removed = 0
    in_hunk = False
    for line in content.splitlines():
        if line.startswith("diff --git"):
            in_hunk = False
        elif line.startswith("@@"):
            in_hunk = True
        elif in_hunk:
            if line.startswith("+"):
                added += 1
            elif line.startswith("-"):
                removed += 1
    return added, removed


class DiffEngine:
    """Runs git in an instance's working directory."""

    def __init__(self, runner: Optional[SubprocessInterface] = None,
                 timeout: float = TIMING.diff_timeout):
        self._runner = runner or RealSubprocess()
        self.timeout = timeout

    def _git(self, path: str, *args: str) -> CommandResult:
        argv: List[str] = [GIT_BINARY, "-C", path, "--no-pager"] + list(args)
        try:
            return self._runner.run(argv, timeout=self.timeout)
        except (FileNotFoundError, PermissionError) as e:
            raise VCSError(f"Cannot execute git: {e}") from e

    def is_repository(self, path: str) -> bool:
        return self._git(path, "rev-parse", "--git-dir").ok

    def current_revision(self, path: str) -> Optional[str]:
        """HEAD commit id, or None for a repository without commits."""
        if not self.is_repository(path):
            raise VCSError(f"{path} is not a git repository")
        result = self._git(path, "rev-parse", "--verify", "-q", "HEAD")
        if not result.ok:
            return None
        return result.stdout.strip() or None

    def revision_exists(self, path: str, revision: str) -> bool:
        if revision == EMPTY_TREE:
            return True
        return self._git(path, "cat-file", "-e", f"{revision}^{{commit}}").ok

    def _run_diff(self, path: str, base: str) -> Tuple[str, int, int]:
        result = self._git(path, "diff", "--no-color", base)
        if not result.ok:
            raise VCSError(result.stderr.strip() or f"git diff exited {result.returncode}")
        added, removed = count_changes(result.stdout)
        return result.stdout, added, removed

    def diff(self, path: str, mode: str = DIFF_MODE_FULL,
             base_revision: Optional[str] = None) -> DiffResult:
        """Diff the working tree in the given mode.

        VCS failures come back as DiffResult.error; CommandTimeout
        propagates so the poller can skip the tick.
        """
        note = ""
        try:
            if not self.is_repository(path):
                return DiffResult(error="not a git repository", mode=mode)
            base = None
            if mode == DIFF_MODE_SESSION:
                if not base_revision:
                    note = "No session snapshot; showing full diff"
                elif not self.revision_exists(path, base_revision):
                    note = f"Session base {base_revision[:8]} no longer exists; showing full diff"
                    logger.info("Snapshot %s missing in %s, falling back to full diff", base_revision, path)
                else:
                    base = base_revision
            if base is None:
                base = self.current_revision(path) or EMPTY_TREE
            content, added, removed = self._run_diff(path, base)
        except VCSError as e:
            return DiffResult(error=str(e), mode=mode)
        return DiffResult(
            added=added,
            removed=removed,
            content=content,
            mode=mode if not note else DIFF_MODE_FULL,
            note=note,
        )
