"""
E2E fixtures: a real tmux server on an isolated socket and real git.

Tests here skip when the binaries are missing.
"""

import pytest

from e2e_helpers import TEST_TMUX_SOCKET, have_binary, tmux_server


@pytest.fixture
def tmux_socket(monkeypatch):
    if not have_binary("tmux"):
        pytest.skip("tmux not installed")
    monkeypatch.setenv("ASMGR_TMUX_SOCKET", TEST_TMUX_SOCKET)
    yield TEST_TMUX_SOCKET
    server = tmux_server(TEST_TMUX_SOCKET)
    if server.is_alive():
        server.kill()


@pytest.fixture
def git_env(monkeypatch):
    """HOME is isolated, so give git an identity through the environment."""
    if not have_binary("git"):
        pytest.skip("git not installed")
    for var in ("GIT_AUTHOR_NAME", "GIT_COMMITTER_NAME"):
        monkeypatch.setenv(var, "asmgr test")
    for var in ("GIT_AUTHOR_EMAIL", "GIT_COMMITTER_EMAIL"):
        monkeypatch.setenv(var, "test@example.com")


@pytest.fixture
def real_controller(store, tmux_socket):
    """Controller over real tmux and git, driven inline without the thread."""
    from asmgr.controller import Controller
    from asmgr.tmux_adapter import TmuxAdapter

    ctl = Controller(store, TmuxAdapter(), check_commands=False)
    ctl.open_project()
    yield ctl
    ctl.shutdown()
