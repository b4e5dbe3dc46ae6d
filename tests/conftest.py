"""
Pytest configuration for asmgr tests.

Every test runs against a throwaway config root so nothing touches
~/.config/agent-session-manager.
"""

import logging

import pytest


def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line(
        "markers", "e2e: mark test as end-to-end integration test (slow)"
    )
    config.addinivalue_line(
        "markers", "requires_tmux: mark test as requiring tmux"
    )
    config.addinivalue_line(
        "markers", "requires_git: mark test as requiring git"
    )


@pytest.fixture(autouse=True)
def isolated_config_dir(tmp_path, monkeypatch):
    """Point ASMGR_CONFIG_DIR at a temp directory for every test."""
    root = tmp_path / "asmgr-config"
    root.mkdir()
    monkeypatch.setenv("ASMGR_CONFIG_DIR", str(root))
    monkeypatch.delenv("ASMGR_TMUX_SOCKET", raising=False)
    return root


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Agent history is read from HOME; keep the real one out of tests."""
    home = tmp_path / "home"
    home.mkdir(exist_ok=True)
    monkeypatch.setenv("HOME", str(home))
    return home


@pytest.fixture(autouse=True)
def restore_asmgr_logger():
    """CLI and logging tests reconfigure the asmgr logger; put it back."""
    root = logging.getLogger("asmgr")
    handlers, level, propagate = list(root.handlers), root.level, root.propagate
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    root.propagate = propagate


@pytest.fixture(autouse=True)
def reset_agent_registry():
    """Undo profile overrides applied by config tests."""
    yield
    from asmgr.agent_profiles import reset_registry
    reset_registry()


@pytest.fixture
def store(isolated_config_dir):
    from asmgr.store import Store
    return Store(isolated_config_dir)


@pytest.fixture
def mock_tmux():
    from asmgr.mocks import MockTmux
    return MockTmux()


@pytest.fixture
def mock_runner():
    from asmgr.mocks import MockSubprocess
    return MockSubprocess()


@pytest.fixture
def workdir(tmp_path):
    """A directory to run sessions in."""
    path = tmp_path / "work"
    path.mkdir()
    return path


@pytest.fixture
def controller(store, mock_tmux, mock_runner):
    """Controller over mocks with no worker thread: commands run inline."""
    from asmgr.controller import Controller

    ctl = Controller(store, mock_tmux, runner=mock_runner, check_commands=False)
    ctl.open_project()
    yield ctl
    ctl.shutdown()

