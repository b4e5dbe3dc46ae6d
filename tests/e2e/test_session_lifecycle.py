"""
E2E: create, start, talk to, and stop a session on a real tmux server.
"""

import pytest
from e2e_helpers import has_session, root_bindings, tmux_server, wait_for

from asmgr.instance import DETACH_KEY
from asmgr.status_constants import AGENT_TERMINAL, STATUS_RUNNING, STATUS_STOPPED
from asmgr.tmux_adapter import TmuxAdapter

pytestmark = [pytest.mark.e2e, pytest.mark.requires_tmux]


class TestSessionLifecycle:
    """Create → start → send → stop → restart."""

    def test_start_and_stop(self, real_controller, tmux_socket, workdir):
        record = real_controller.create_instance("shell", str(workdir), AGENT_TERMINAL, start=True)

        assert has_session(tmux_socket, record.session_name)
        real_controller.tick()
        assert real_controller.get_snapshot().find(record.id).status == STATUS_RUNNING

        real_controller.stop_instance(record.id)
        assert not has_session(tmux_socket, record.session_name)
        assert real_controller.get_snapshot().find(record.id).status == STATUS_STOPPED

        real_controller.start_instance(record.id)
        assert has_session(tmux_socket, record.session_name)

    def test_prompt_reaches_pane(self, real_controller, workdir):
        record = real_controller.create_instance("shell", str(workdir), AGENT_TERMINAL, start=True)

        real_controller.send_prompt(record.id, "echo asmgr-e2e-marker")

        assert wait_for(lambda: "asmgr-e2e-marker" in real_controller.get_preview(record.id))

    def test_terminal_tab_lifecycle(self, real_controller, workdir):
        record = real_controller.create_instance("shell", str(workdir), AGENT_TERMINAL, start=True)

        window = real_controller.add_window(record.id, AGENT_TERMINAL, "logs")
        names = [w.name for w in real_controller.list_live_windows(record.id)]
        assert "logs" in names

        real_controller.close_window(record.id, window.index)
        assert [w.index for w in real_controller.list_live_windows(record.id)] == [0]

    def test_killed_session_detected(self, real_controller, tmux_socket, workdir):
        record = real_controller.create_instance("shell", str(workdir), AGENT_TERMINAL, start=True)
        tmux_server(tmux_socket).kill_session(record.session_name)

        for _ in range(real_controller.missed_ticks_to_stop):
            real_controller.tick()

        assert real_controller.get_snapshot().find(record.id).status == STATUS_STOPPED

    def test_listing_sees_every_session(self, real_controller, tmux_socket, workdir):
        first = real_controller.create_instance("one", str(workdir), AGENT_TERMINAL, start=True)
        second = real_controller.create_instance("two", str(workdir), AGENT_TERMINAL, start=True)

        names = TmuxAdapter().list_sessions()

        assert first.session_name in names
        assert second.session_name in names

    def test_detach_key_survives_second_session(self, real_controller, tmux_socket, workdir):
        first = real_controller.create_instance("one", str(workdir), AGENT_TERMINAL, start=True)
        second = real_controller.create_instance("two", str(workdir), AGENT_TERMINAL, start=True)

        server = tmux_server(tmux_socket)
        for record in (first, second):
            shown = server.cmd("show-options", "-t", f"={record.session_name}", "-v",
                               "@asmgr_key_C_q").stdout
            assert shown == ["1"]
        assert "#{@asmgr_key_C_q}" in root_bindings(tmux_socket)
        assert DETACH_KEY in root_bindings(tmux_socket)
