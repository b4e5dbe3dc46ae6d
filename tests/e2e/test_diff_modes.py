"""
E2E: full and session diff modes against a real git repository.
"""

import pytest
from e2e_helpers import git

from asmgr.status_constants import AGENT_TERMINAL, DIFF_MODE_FULL, DIFF_MODE_SESSION

pytestmark = [pytest.mark.e2e, pytest.mark.requires_tmux, pytest.mark.requires_git]


@pytest.fixture
def repo(workdir, git_env):
    git(workdir, "init", "-q")
    (workdir / "notes.txt").write_text("one\ntwo\n")
    git(workdir, "add", "notes.txt")
    git(workdir, "commit", "-q", "-m", "initial")
    return workdir


class TestDiffModes:
    def test_full_and_session_modes(self, real_controller, repo):
        record = real_controller.create_instance("agent", str(repo), AGENT_TERMINAL, start=True)
        assert record.base_revision == git(repo, "rev-parse", "HEAD").strip()

        (repo / "notes.txt").write_text("one\nTWO\nthree\nfour\n")
        full = real_controller.get_diff(record.id, DIFF_MODE_FULL)
        assert (full.added, full.removed) == (3, 1)

        git(repo, "commit", "-q", "-am", "agent work")

        assert real_controller.get_diff(record.id, DIFF_MODE_FULL).is_empty
        session = real_controller.get_diff(record.id, DIFF_MODE_SESSION)
        assert (session.added, session.removed) == (3, 1)
        assert session.note == ""

    def test_not_a_repository(self, real_controller, workdir, git_env):
        record = real_controller.create_instance("plain", str(workdir), AGENT_TERMINAL, start=True)
        result = real_controller.get_diff(record.id, DIFF_MODE_FULL)
        assert result.error == "not a git repository"
