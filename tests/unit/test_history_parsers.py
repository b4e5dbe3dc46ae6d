"""
Unit tests for agent history readers.

Each test builds a miniature history tree under a fake HOME.
"""

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from asmgr.exceptions import ParseError
from asmgr.history_parsers import (
    AIDER_CHAT_FILE,
    HistoryContext,
    claude_history_files,
    encode_claude_path,
    gemini_project_hash,
    list_claude_conversations,
    parse_aider_file,
    parse_claude_file,
    parse_codex_file,
    parse_gemini_file,
    parse_opencode_file,
    parse_timestamp,
    terminal_capture_entries,
    truncate_prompt,
)
from asmgr.status_constants import ROLE_ASSISTANT, ROLE_SYSTEM, ROLE_USER

SESSION_UUID = "0b3f2c4e-1111-2222-3333-444455556666"


@pytest.fixture
def fake_home(isolated_home):
    return isolated_home


def write_jsonl(path: Path, records):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(json.dumps(r) for r in records) + "\n")


class TestHelpers:
    """Test shared helpers."""

    def test_parse_timestamp_iso_z(self):
        ts = parse_timestamp("2024-05-01T10:00:00Z")
        assert ts == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)

    def test_parse_timestamp_epoch_ms(self):
        assert parse_timestamp(1714557600000) == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)

    def test_parse_timestamp_garbage(self):
        assert parse_timestamp("yesterday") is None
        assert parse_timestamp(None) is None

    def test_truncate_prompt_collapses_whitespace(self):
        assert truncate_prompt("fix\n  the   bug") == "fix the bug"
        assert truncate_prompt("x" * 100, 10) == "x" * 9 + "…"

    def test_encode_claude_path(self):
        assert encode_claude_path("/home/u/my_proj") == "-home-u-my-proj"


class TestClaude:
    """Test Claude JSONL transcripts."""

    def make_transcript(self, home: Path, cwd="/work/app"):
        path = home / ".claude" / "projects" / encode_claude_path(cwd) / f"{SESSION_UUID}.jsonl"
        write_jsonl(path, [
            {"type": "summary", "summary": "ignored"},
            {"type": "user", "cwd": cwd, "timestamp": "2024-05-01T10:00:00Z",
             "message": {"role": "user", "content": "deploy the service"}},
            {"type": "assistant", "timestamp": "2024-05-01T10:00:05Z",
             "message": {"role": "assistant", "content": [
                 {"type": "text", "text": "Deploying now"},
                 {"type": "tool_use", "name": "Bash"},
             ]}},
            {"type": "user", "timestamp": "2024-05-01T10:00:06Z",
             "message": {"role": "user", "content": [{"type": "tool_result", "content": "ok"}]}},
            {"type": "user", "isSidechain": True,
             "message": {"role": "user", "content": "subagent prompt"}},
        ])
        path.parent.joinpath("not-a-session.txt").write_text("x")
        return path

    def test_parse_entries(self, fake_home):
        path = self.make_transcript(fake_home)
        entries = parse_claude_file(path)
        assert [(e.role, e.content) for e in entries] == [
            (ROLE_USER, "deploy the service"),
            (ROLE_ASSISTANT, "Deploying now"),
        ]
        assert all(e.session_id == SESSION_UUID for e in entries)
        assert all(e.cwd == "/work/app" for e in entries)

    def test_bad_lines_skipped(self, fake_home):
        path = self.make_transcript(fake_home)
        with open(path, "a") as f:
            f.write("{truncated\n")
        assert len(parse_claude_file(path)) == 2

    def test_history_files(self, fake_home):
        self.make_transcript(fake_home)
        files = claude_history_files(HistoryContext())
        assert [f.name for f in files] == [f"{SESSION_UUID}.jsonl"]

    def test_list_conversations(self, fake_home):
        self.make_transcript(fake_home)
        candidates = list_claude_conversations("/work/app")
        assert len(candidates) == 1
        assert candidates[0].session_id == SESSION_UUID
        assert candidates[0].first_prompt == "deploy the service"
        assert candidates[0].message_count == 1

    def test_list_conversations_other_path(self, fake_home):
        self.make_transcript(fake_home)
        assert list_claude_conversations("/elsewhere") == []


class TestGemini:
    """Test Gemini session JSON."""

    def test_cwd_recovered_from_hash(self, fake_home):
        project = "/work/api"
        path = fake_home / ".gemini" / "tmp" / gemini_project_hash(project) / "chats" / "session-1.json"
        path.parent.mkdir(parents=True)
        path.write_text(json.dumps({
            "sessionId": "g-1",
            "projectHash": gemini_project_hash(project),
            "messages": [
                {"type": "user", "content": "run migrations", "timestamp": "2024-05-01T09:00:00Z"},
                {"type": "gemini", "content": "Done."},
                {"type": "info", "content": "Auth refreshed"},
            ],
        }))

        entries = parse_gemini_file(path, HistoryContext(known_paths=[project]))

        assert [e.role for e in entries] == [ROLE_USER, ROLE_ASSISTANT]
        assert entries[0].cwd == project
        assert entries[0].session_id == "g-1"

    def test_unknown_hash_has_no_cwd(self, fake_home, tmp_path):
        path = tmp_path / "abc" / "chats" / "session-2.json"
        path.parent.mkdir(parents=True)
        path.write_text(json.dumps({"messages": [{"type": "user", "content": "hi"}]}))
        assert parse_gemini_file(path, HistoryContext()).pop().cwd == ""

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "session-x.json"
        path.write_text("{nope")
        with pytest.raises(ParseError):
            parse_gemini_file(path)


class TestAider:
    """Test Aider transcripts."""

    def test_markdown_transcript(self, tmp_path):
        project = tmp_path / "proj"
        project.mkdir()
        path = project / AIDER_CHAT_FILE
        path.write_text(
            "# aider chat started at 2024-05-01 10:00:00\n"
            "> Aider v0.50\n"
            "#### add a health check\n"
            "Sure, here is the change.\n"
            "\n"
            "#### thanks\n"
        )

        entries = parse_aider_file(path)

        assert [(e.role, e.content) for e in entries] == [
            (ROLE_USER, "add a health check"),
            (ROLE_ASSISTANT, "Sure, here is the change."),
            (ROLE_USER, "thanks"),
        ]
        assert all(e.cwd == str(project) for e in entries)

    def test_global_history_uses_default_path(self, tmp_path):
        path = tmp_path / "history.jsonl"
        path.write_text(
            json.dumps({"role": "user", "content": "refactor"}) + "\n"
            + json.dumps({"role": "assistant", "content": "ok"}) + "\n"
            + "plain prompt line\n"
        )
        entries = parse_aider_file(path, HistoryContext(aider_default_path="/work"))
        assert [e.content for e in entries] == ["refactor", "plain prompt line"]
        assert entries[0].cwd == "/work"


class TestCodex:
    """Test Codex rollout files."""

    def test_parse_rollout(self, tmp_path):
        path = tmp_path / "rollout-2024-05-01.jsonl"
        write_jsonl(path, [
            {"type": "session_meta", "payload": {"id": "cx-1", "cwd": "/work/cli"}},
            {"type": "response_item", "timestamp": "2024-05-01T10:00:00Z",
             "payload": {"type": "message", "role": "user",
                         "content": [{"type": "input_text", "text": "<environment_context>x"}]}},
            {"type": "response_item", "timestamp": "2024-05-01T10:00:01Z",
             "payload": {"type": "message", "role": "user",
                         "content": [{"type": "input_text", "text": "add tests"}]}},
            {"type": "response_item",
             "payload": {"type": "message", "role": "assistant",
                         "content": [{"type": "output_text", "text": "Added."}]}},
            {"type": "response_item", "payload": {"type": "reasoning"}},
        ])

        entries = parse_codex_file(path)

        assert [(e.role, e.content) for e in entries] == [
            (ROLE_USER, "add tests"), (ROLE_ASSISTANT, "Added."),
        ]
        assert entries[0].session_id == "cx-1"
        assert entries[0].cwd == "/work/cli"


class TestOpenCode:
    """Test OpenCode's split storage tree."""

    def test_parse_session_tree(self, tmp_path):
        storage = tmp_path / "storage"
        session = storage / "session" / "proj1" / "ses_1.json"
        session.parent.mkdir(parents=True)
        session.write_text(json.dumps({"id": "ses_1", "directory": "/work/web"}))
        messages = storage / "message" / "ses_1"
        messages.mkdir(parents=True)
        (messages / "msg_1.json").write_text(json.dumps(
            {"id": "msg_1", "role": "user", "time": {"created": 1714557600000}}))
        (messages / "msg_2.json").write_text(json.dumps(
            {"id": "msg_2", "role": "assistant", "time": {"created": 1714557601000}}))
        for msg_id, text in (("msg_1", "style the navbar"), ("msg_2", "Styled.")):
            parts = storage / "part" / msg_id
            parts.mkdir(parents=True)
            (parts / "prt_1.json").write_text(json.dumps({"type": "text", "text": text}))

        entries = parse_opencode_file(session)

        assert [(e.role, e.content) for e in entries] == [
            (ROLE_USER, "style the navbar"), (ROLE_ASSISTANT, "Styled."),
        ]
        assert entries[0].cwd == "/work/web"


class TestTerminalCaptures:
    """Test terminal capture entries."""

    def test_terminal_capture_entry(self):
        now = datetime.now(timezone.utc)
        entries = terminal_capture_entries("$ make deploy\nok\n", "i1", 2, "/work", now, "tmux:s:2")
        assert len(entries) == 1
        entry = entries[0]
        assert (entry.role, entry.instance_id, entry.tab_index) == (ROLE_SYSTEM, "i1", 2)

    def test_blank_capture_has_no_entry(self):
        assert terminal_capture_entries("  \n", "i1", 1, "/", datetime.now(timezone.utc), "s") == []
