"""
Unit tests for the persisted data model.
"""

import pytest

from asmgr.exceptions import ConfigError
from asmgr.models import (
    Group,
    InstanceRecord,
    Project,
    UISettings,
    Window,
    new_instance_id,
    sanitize_name,
    session_name_for,
)
from asmgr.status_constants import AGENT_CLAUDE, AGENT_TERMINAL, STATUS_RUNNING, STATUS_STOPPED


class TestIds:
    """Test id and name derivation."""

    def test_sanitize_name(self):
        assert sanitize_name("My Feature!") == "my_feature"
        assert sanitize_name("  ") == "session"

    def test_instance_id_prefixed_by_agent(self):
        instance_id = new_instance_id("claude", "Fix Bug")
        assert instance_id.startswith("claude_fix_bug_")

    def test_session_name_is_derived(self):
        assert session_name_for("abc") == "asmgr-abc"


class TestInstanceRecord:
    """Test InstanceRecord invariants."""

    def test_new_record_has_primary_window(self):
        record = InstanceRecord(id="i1", name="one", path="/tmp", agent=AGENT_CLAUDE)
        assert len(record.windows) == 1
        primary = record.windows[0]
        assert primary.index == 0
        assert primary.agent == AGENT_CLAUDE
        assert record.status == STATUS_STOPPED
        assert not record.is_running

    def test_session_name(self):
        record = InstanceRecord(id="i1", name="one", path="/tmp", agent=AGENT_CLAUDE)
        assert record.session_name == "asmgr-i1"

    def test_round_trip_keeps_windows(self):
        record = InstanceRecord(id="i1", name="one", path="/tmp", agent=AGENT_CLAUDE,
                                status=STATUS_RUNNING, notes="hello")
        record.windows.append(Window(index=2, name="shell", agent=AGENT_TERMINAL))

        restored = InstanceRecord.from_dict(record.to_dict())

        assert restored == record

    def test_from_dict_ignores_unknown_keys(self):
        data = InstanceRecord(id="i1", name="one", path="/tmp", agent=AGENT_CLAUDE).to_dict()
        data["future_field"] = 42
        restored = InstanceRecord.from_dict(data)
        assert restored.id == "i1"

    def test_duplicate_window_index_rejected(self):
        record = InstanceRecord(id="i1", name="one", path="/tmp", agent=AGENT_CLAUDE)
        record.windows.append(Window(index=0, name="dup", agent=AGENT_TERMINAL))
        with pytest.raises(ConfigError):
            record.validate()

    def test_primary_window_must_match_agent(self):
        data = InstanceRecord(id="i1", name="one", path="/tmp", agent=AGENT_CLAUDE).to_dict()
        data["windows"][0]["agent"] = AGENT_TERMINAL
        with pytest.raises(ConfigError):
            InstanceRecord.from_dict(data)

    def test_unknown_agent_rejected(self):
        data = InstanceRecord(id="i1", name="one", path="/tmp", agent=AGENT_CLAUDE).to_dict()
        data["agent"] = "cobol-bot"
        with pytest.raises(ConfigError):
            InstanceRecord.from_dict(data)


class TestOtherRecords:
    """Test Project, Group and UISettings serialization."""

    def test_project_accepts_camel_case(self):
        project = Project.from_dict({"id": "p", "name": "P", "createdAt": "2024-01-01"})
        assert project.created_at == "2024-01-01"

    def test_group_member_ids_default(self):
        group = Group.from_dict({"id": "g", "name": "G", "member_ids": None})
        assert group.member_ids == []

    def test_ui_settings_from_none(self):
        assert UISettings.from_dict(None) == UISettings()
