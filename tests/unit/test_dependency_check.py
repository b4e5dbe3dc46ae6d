"""
Unit tests for external binary checks.
"""

import pytest

from asmgr import dependency_check
from asmgr.exceptions import MultiplexerUnavailable, VCSError


@pytest.fixture
def which(monkeypatch):
    found = {}
    monkeypatch.setattr(dependency_check.shutil, "which", lambda name: found.get(name))
    monkeypatch.setattr(dependency_check, "_version", lambda argv: f"{argv[0]} 9.9")
    return found


class TestChecks:
    def test_tmux_found(self, which):
        which["tmux"] = "/usr/bin/tmux"
        assert dependency_check.check_tmux() == (True, "/usr/bin/tmux", "tmux 9.9")

    def test_tmux_missing(self, which):
        assert dependency_check.check_tmux() == (False, None, None)

    def test_git_found(self, which):
        which["git"] = "/usr/bin/git"
        assert dependency_check.check_git() == (True, "/usr/bin/git", "git 9.9")


class TestRequire:
    def test_require_tmux_returns_path(self, which):
        which["tmux"] = "/opt/tmux"
        assert dependency_check.require_tmux() == "/opt/tmux"

    def test_require_tmux_raises(self, which):
        with pytest.raises(MultiplexerUnavailable, match="tmux is required"):
            dependency_check.require_tmux()

    def test_require_git_raises(self, which):
        with pytest.raises(VCSError, match="git is required"):
            dependency_check.require_git()


def test_version_handles_missing_binary():
    assert dependency_check._version(["definitely-not-a-real-binary-xyz", "--version"]) is None
