"""
Unit tests for the Controller.

The controller fixture never starts the worker thread, so commands run
inline and tests drive observation passes by calling tick() directly.
"""

import pytest

from asmgr.controller import PREVIEW_TAB_DIFF, Controller
from asmgr.exceptions import ConfigError, NotFound, NotRunning
from asmgr.mocks import MockSubprocess, MockTmux
from asmgr.protocols import CommandResult
from asmgr.status_constants import (
    ACTIVITY_BUSY,
    ACTIVITY_IDLE,
    AGENT_CLAUDE,
    AGENT_TERMINAL,
    DIFF_MODE_SESSION,
    STATUS_RUNNING,
    STATUS_STOPPED,
)
from asmgr.store import Store


def create(controller, workdir, name="demo", start=True, **kwargs):
    return controller.create_instance(name, str(workdir), AGENT_CLAUDE, start=start, **kwargs)


def status_of(controller, instance_id):
    return controller.get_snapshot().find(instance_id).status


class TestCreateAndSnapshot:
    """Test commands and the published snapshot."""

    def test_create_publishes_and_selects(self, controller, workdir):
        record = create(controller, workdir)
        snapshot = controller.get_snapshot()
        assert [i.id for i in snapshot.instances] == [record.id]
        assert snapshot.selected_id == record.id
        assert snapshot.find(record.id).status == STATUS_RUNNING

    def test_snapshot_holds_copies(self, controller, workdir):
        record = create(controller, workdir)
        controller.get_snapshot().find(record.id).name = "mutated"
        assert controller.get_snapshot().find(record.id).name == "demo"

    def test_snapshot_readers_do_not_share_state(self, controller, workdir):
        record = create(controller, workdir)
        first = controller.get_snapshot()
        first.instances.clear()
        first.activities["x"] = "busy"

        second = controller.get_snapshot()

        assert [i.id for i in second.instances] == [record.id]
        assert "x" not in second.activities

    def test_subscriber_mutation_does_not_hide_changes(self, controller, workdir):
        """A subscriber editing its snapshot must not suppress the next publish."""
        def scribble(snapshot):
            for inst in snapshot.instances:
                inst.name = "scribbled"

        controller.subscribe(scribble)
        record = create(controller, workdir, start=False)
        controller.rename_instance(record.id, "scribbled")

        assert controller.get_snapshot().find(record.id).name == "scribbled"

    def test_delete_moves_selection(self, controller, workdir, store, mock_tmux):
        first = create(controller, workdir, "one")
        second = create(controller, workdir, "two")

        controller.delete_instance(first.id)

        snapshot = controller.get_snapshot()
        assert [i.id for i in snapshot.instances] == [second.id]
        assert snapshot.selected_id == second.id
        assert first.session_name not in mock_tmux.sessions
        assert [i.id for i in store.load_all("")[0]] == [second.id]

    def test_find_by_name(self, controller, workdir):
        record = create(controller, workdir, start=False)
        assert controller.find_by_name("demo").id == record.id
        assert controller.find_by_name(record.id).id == record.id
        assert controller.find_by_name("missing") is None

    def test_select_unknown(self, controller):
        with pytest.raises(NotFound):
            controller.select("nope")


class TestTick:
    """Test status reconciliation and activity."""

    def test_vanished_session_stops_after_missed_ticks(self, controller, workdir, mock_tmux):
        record = create(controller, workdir)
        mock_tmux.kill_session(record.session_name)

        controller.tick()
        controller.tick()
        assert status_of(controller, record.id) == STATUS_RUNNING

        controller.tick()
        assert status_of(controller, record.id) == STATUS_STOPPED

    def test_reappearing_session_resets_count(self, controller, workdir, mock_tmux):
        record = create(controller, workdir)
        mock_tmux.kill_session(record.session_name)
        controller.tick()
        controller.tick()
        mock_tmux.new_session(record.session_name, ["claude"], str(workdir), 80, 24)
        controller.tick()
        mock_tmux.kill_session(record.session_name)
        controller.tick()
        assert status_of(controller, record.id) == STATUS_RUNNING

    def test_live_session_adopted(self, controller, workdir, mock_tmux):
        record = create(controller, workdir, start=False)
        mock_tmux.new_session(record.session_name, ["claude"], str(workdir), 80, 24)
        controller.tick()
        assert status_of(controller, record.id) == STATUS_RUNNING

    def test_adopted_session_gets_diff_baseline(self, controller, workdir, mock_tmux,
                                                mock_runner, store):
        mock_runner.respond_with(
            ["git"], lambda cmd: CommandResult(0, "abc123\n" if "HEAD" in cmd else "", ""),
        )
        record = create(controller, workdir, start=False)
        assert store.read_snapshot(record.id) is None

        mock_tmux.new_session(record.session_name, ["claude"], str(workdir), 80, 24)
        controller.tick()

        assert store.read_snapshot(record.id) == "abc123"
        assert controller.get_snapshot().find(record.id).base_revision == "abc123"

    def test_activity_busy_then_idle(self, controller, workdir, mock_tmux):
        record = create(controller, workdir)
        mock_tmux.set_pane_content(record.session_name, 0, "Compiling…")

        controller.tick()
        assert controller.get_snapshot().activities[record.id] == ACTIVITY_BUSY
        controller.tick()
        assert controller.get_snapshot().activities[record.id] == ACTIVITY_IDLE
        assert controller.get_snapshot().teasers[record.id].plain == "Compiling…"

    def test_preview_follows_selection(self, controller, workdir, mock_tmux):
        record = create(controller, workdir)
        mock_tmux.set_pane_content(record.session_name, 0, "hello from agent")
        controller.tick()
        assert controller.get_snapshot().preview == "hello from agent"

    def test_dead_tab_reflected(self, controller, workdir, mock_tmux):
        record = create(controller, workdir)
        controller.add_window(record.id, AGENT_TERMINAL, "logs")
        mock_tmux.mark_dead(record.session_name, 1)
        controller.tick()
        assert controller.get_snapshot().find(record.id).windows[1].dead is True

    def test_diff_computed_on_diff_tab(self, controller, workdir):
        create(controller, workdir)
        controller.tick()
        assert controller.get_snapshot().diff is None

        controller.set_preview_tab(PREVIEW_TAB_DIFF)
        controller.tick()
        assert controller.get_snapshot().diff is not None

    def test_bad_view_values(self, controller):
        with pytest.raises(ValueError):
            controller.set_preview_tab("bogus")
        with pytest.raises(ValueError):
            controller.set_diff_mode("bogus")

    def test_diff_mode_published(self, controller):
        controller.set_diff_mode(DIFF_MODE_SESSION)
        assert controller.get_snapshot().diff_mode == DIFF_MODE_SESSION


class TestSubscriptions:
    """Subscribers hear only about visible changes."""

    def test_unchanged_tick_does_not_notify(self, controller, workdir, mock_tmux):
        record = create(controller, workdir)
        mock_tmux.set_pane_content(record.session_name, 0, "steady output")
        seen = []
        controller.subscribe(seen.append)

        controller.tick()
        controller.tick()
        count = len(seen)

        assert controller.tick() is False
        assert len(seen) == count

    def test_versions_increase(self, controller, workdir):
        seen = []
        controller.subscribe(seen.append)
        create(controller, workdir, "one", start=False)
        create(controller, workdir, "two", start=False)
        versions = [s.version for s in seen]
        assert versions == sorted(versions)
        assert len(set(versions)) == len(versions)

    def test_unsubscribe(self, controller, workdir):
        seen = []
        unsubscribe = controller.subscribe(seen.append)
        unsubscribe()
        create(controller, workdir, start=False)
        assert seen == []

    def test_failing_subscriber_does_not_break_publish(self, controller, workdir):
        def broken(snapshot):
            raise RuntimeError("boom")

        controller.subscribe(broken)
        record = create(controller, workdir, start=False)
        assert controller.get_snapshot().find(record.id) is not None


class TestErrorSlot:
    """Test last_error bookkeeping."""

    def test_failure_recorded_then_cleared(self, controller, workdir, tmp_path):
        with pytest.raises(ConfigError):
            controller.create_instance("x", str(tmp_path / "missing"), AGENT_CLAUDE)
        assert "does not exist" in controller.get_snapshot().last_error

        create(controller, workdir, start=False)
        assert controller.get_snapshot().last_error is None

    def test_soft_error_not_recorded(self, controller, workdir):
        record = create(controller, workdir, start=False)
        with pytest.raises(NotRunning):
            controller.send_prompt(record.id, "hi")
        assert controller.get_snapshot().last_error is None

    def test_other_command_keeps_error(self, controller, workdir, tmp_path):
        record = create(controller, workdir, start=False)
        with pytest.raises(ConfigError):
            controller.create_instance("x", str(tmp_path / "missing"), AGENT_CLAUDE)
        controller.rename_instance(record.id, "renamed")
        assert controller.last_error is not None
        controller.clear_error()
        assert controller.last_error is None

    def test_tmux_unavailable_on_tick(self, controller, mock_tmux):
        mock_tmux.available = False
        controller.tick()
        assert controller.get_snapshot().last_error == "tmux not found"

        mock_tmux.available = True
        controller.tick()
        assert controller.get_snapshot().last_error is None

    def test_corrupt_project_file(self, isolated_config_dir):
        store = Store(isolated_config_dir)
        sessions_file = store.paths.sessions_file("")
        sessions_file.parent.mkdir(parents=True, exist_ok=True)
        sessions_file.write_text("{not json")

        ctl = Controller(store, MockTmux(), runner=MockSubprocess(), check_commands=False)
        try:
            ctl.open_project()
            snapshot = ctl.get_snapshot()
            assert snapshot.instances == []
            assert "Corrupt project file" in snapshot.last_error
            assert list(sessions_file.parent.glob("*.corrupt-*"))
        finally:
            ctl.shutdown()


class TestTickWithRealAdapter:
    """The tick loop over TmuxAdapter with a scripted tmux."""

    @pytest.fixture
    def tmux_runner(self):
        return MockSubprocess()

    @pytest.fixture
    def adapter_controller(self, store, tmux_runner, mock_runner):
        from asmgr.tmux_adapter import TmuxAdapter

        ctl = Controller(store, TmuxAdapter(runner=tmux_runner, enter_delay=0),
                         runner=mock_runner, check_commands=False)
        ctl.open_project()
        yield ctl
        ctl.shutdown()

    def test_failed_listing_never_stops_sessions(self, adapter_controller, tmux_runner, workdir):
        record = create(adapter_controller, workdir)
        tmux_runner.respond(["tmux", "list-sessions"], stderr="server exited unexpectedly",
                            returncode=1)

        for _ in range(5):
            adapter_controller.tick()

        assert status_of(adapter_controller, record.id) == STATUS_RUNNING

    def test_missing_tmux_reported_not_stopped(self, adapter_controller, tmux_runner, workdir):
        record = create(adapter_controller, workdir)

        def gone(cmd):
            raise FileNotFoundError("tmux")

        tmux_runner.respond_with(["tmux"], gone)
        for _ in range(5):
            adapter_controller.tick()

        snapshot = adapter_controller.get_snapshot()
        assert snapshot.find(record.id).status == STATUS_RUNNING
        assert "tmux" in snapshot.last_error

    def test_no_server_stops_after_missed_ticks(self, adapter_controller, tmux_runner, workdir):
        record = create(adapter_controller, workdir)
        tmux_runner.respond(["tmux", "list-sessions"],
                            stderr="no server running on /tmp/tmux-1000/default", returncode=1)

        for _ in range(3):
            adapter_controller.tick()

        assert status_of(adapter_controller, record.id) == STATUS_STOPPED

    def test_tmux_vanishing_mid_tick(self, adapter_controller, tmux_runner, workdir):
        record = create(adapter_controller, workdir)
        tmux_runner.respond(["tmux", "list-sessions"], stdout=f"{record.session_name}\n")

        def gone(cmd):
            raise FileNotFoundError("tmux")

        tmux_runner.respond_with(["tmux", "list-windows"], gone)
        tmux_runner.respond_with(["tmux", "capture-pane"], gone)

        adapter_controller.tick()

        assert status_of(adapter_controller, record.id) == STATUS_RUNNING


class TestWindowsAndInput:
    """Test window and input commands through the controller."""

    def test_send_prompt_and_key(self, controller, workdir, mock_tmux):
        record = create(controller, workdir)
        controller.send_prompt(record.id, "run tests")
        controller.send_key(record.id, "Enter")
        assert mock_tmux.sent_keys == [(record.session_name, 0, "run tests")]
        assert mock_tmux.sent_special == [(record.session_name, 0, "Enter")]

    def test_accept_suggestion(self, controller, workdir, mock_tmux):
        record = create(controller, workdir)
        rule = "─" * 40
        mock_tmux.set_pane_content(record.session_name, 0, f"{rule}\n> add a changelog\n{rule}")
        assert controller.accept_suggestion(record.id) == "add a changelog"
        assert mock_tmux.sent_keys[-1][2] == "add a changelog"

    def test_no_suggestion(self, controller, workdir, mock_tmux):
        record = create(controller, workdir)
        assert controller.accept_suggestion(record.id) == ""
        assert mock_tmux.sent_keys == []

    def test_resize(self, controller, workdir, mock_tmux):
        record = create(controller, workdir)
        controller.resize_pane(record.id, 120, 40)
        assert (mock_tmux.sessions[record.session_name].cols,
                mock_tmux.sessions[record.session_name].rows) == (120, 40)

    def test_fork_sibling_added(self, controller, workdir):
        record = create(controller, workdir, start=False)
        clone = controller.fork(record.id, "copy")
        assert [i.name for i in controller.get_snapshot().instances] == ["demo", "copy"]
        assert clone.path == record.path


class TestGroupsAndProjects:
    """Test groups and project switching."""

    def test_group_membership(self, controller, workdir):
        record = create(controller, workdir, start=False)
        group = controller.create_group("backend")
        controller.assign_to_group(record.id, group.id)

        snapshot = controller.get_snapshot()
        assert snapshot.groups[0].member_ids == [record.id]
        assert snapshot.find(record.id).group_id == group.id

        assert controller.toggle_group_collapsed(group.id) is True
        controller.delete_instance(record.id)
        assert controller.get_snapshot().groups[0].member_ids == []

    def test_fork_joins_group(self, controller, workdir):
        record = create(controller, workdir, start=False)
        group = controller.create_group("backend")
        controller.assign_to_group(record.id, group.id)
        clone = controller.fork(record.id, "copy")
        assert controller.get_snapshot().groups[0].member_ids == [record.id, clone.id]

    def test_switch_project(self, controller, workdir, store):
        create(controller, workdir, start=False)
        other = store.create_project("Other")

        controller.switch_project(other.id)

        snapshot = controller.get_snapshot()
        assert snapshot.project_id == other.id
        assert snapshot.instances == []
        assert store.get_active_project() == other.id


class TestSearch:
    """Test the history index wiring."""

    def test_terminal_scrollback_searchable(self, controller, workdir, mock_tmux):
        record = create(controller, workdir)
        controller.add_window(record.id, AGENT_TERMINAL, "logs")
        mock_tmux.set_pane_content(record.session_name, 1, "$ make deploy\nDeployed v2")

        assert controller.build_history_index() >= 1
        matches = controller.search("DEPLOYED")

        assert [(m.instance_id, m.tab_index) for m in matches] == [(record.id, 1)]
        assert controller.history_index.is_loaded

    def test_load_conversation_for_match(self, controller, workdir, mock_tmux):
        record = create(controller, workdir)
        controller.add_window(record.id, AGENT_TERMINAL, "logs")
        mock_tmux.set_pane_content(record.session_name, 1, "$ make deploy\nDeployed v2")
        controller.build_history_index()

        match = controller.search("deployed")[0]
        messages = controller.load_conversation(match.entry)

        assert len(messages) == 1
        assert "Deployed v2" in messages[0].content


class TestWorkerThread:
    """Test the threaded mode used by the TUI."""

    def test_commands_run_on_worker(self, controller, workdir):
        controller.start()
        assert controller.is_running
        record = create(controller, workdir, start=False)
        assert controller.call(lambda: controller.find_by_name("demo").id) == record.id
        controller.shutdown()
        assert not controller.is_running

    def test_command_errors_propagate(self, controller, tmp_path):
        controller.start()
        with pytest.raises(ConfigError):
            controller.create_instance("x", str(tmp_path / "missing"), AGENT_CLAUDE)
        controller.shutdown()


class TestMiscCommands:
    """Test the smaller façade commands."""

    def test_detect_activity_tracks_fingerprint(self, controller, workdir, mock_tmux):
        record = create(controller, workdir)
        mock_tmux.set_pane_content(record.session_name, 0, "Compiling…")
        assert controller.detect_activity(record.id).activity == ACTIVITY_BUSY
        assert controller.detect_activity(record.id).activity == ACTIVITY_IDLE

    def test_last_line_after_tick(self, controller, workdir, mock_tmux):
        record = create(controller, workdir)
        mock_tmux.set_pane_content(record.session_name, 0, "Wrote 3 files")
        controller.tick()
        assert controller.get_last_line(record.id).plain == "Wrote 3 files"

    def test_set_colors(self, controller, workdir):
        record = create(controller, workdir, start=False)
        controller.set_colors(record.id, "cyan", "grey15", full_row=True)
        stored = controller.get_snapshot().find(record.id)
        assert (stored.color, stored.bg_color, stored.full_row_color) == ("cyan", "grey15", True)

    def test_reorder(self, controller, workdir):
        one = create(controller, workdir, "one", start=False)
        two = create(controller, workdir, "two", start=False)
        controller.reorder_instances([two.id, one.id])
        assert [i.name for i in controller.get_snapshot().instances] == ["two", "one"]

    def test_group_colors(self, controller):
        group = controller.create_group("ops")
        controller.set_group_colors(group.id, "red", "black")
        assert controller.get_snapshot().groups[0].color == "red"

    def test_resume_candidates_empty(self, controller, workdir):
        record = create(controller, workdir, start=False)
        assert controller.list_resume_candidates(record.id) == []
