"""
Unit tests for the cross-agent history index.
"""

import json
from datetime import datetime, timedelta, timezone

from asmgr.agent_profiles import AgentProfile
from asmgr.history_index import HistoryIndex, extract_snippet, resolve_entry
from asmgr.history_parsers import ConversationEntry, parse_claude_file
from asmgr.models import InstanceRecord, Window
from asmgr.status_constants import AGENT_CLAUDE, AGENT_TERMINAL, ROLE_ASSISTANT, ROLE_USER

T0 = datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)


def entry(content, cwd="", session_id="", minutes=0, agent=AGENT_CLAUDE, **kwargs):
    return ConversationEntry(
        agent=agent,
        source_path=kwargs.pop("source_path", "/h/x.jsonl"),
        timestamp=T0 + timedelta(minutes=minutes),
        role=kwargs.pop("role", ROLE_USER),
        content=content,
        session_id=session_id,
        cwd=cwd,
        **kwargs,
    )


def instance(iid, path, **kwargs):
    return InstanceRecord(id=iid, name=iid, path=path, agent=AGENT_CLAUDE, **kwargs)


def index_with(entries, instances):
    index = HistoryIndex(profiles=[])
    index.build(instances, terminal_entries=entries)
    return index


class TestResolve:
    """Test mapping entries back to instances and tabs."""

    def test_path_picks_instance(self):
        a, b = instance("A", "/a"), instance("B", "/b")
        index = index_with([entry("deploy now", cwd="/a"), entry("deploy later", cwd="/b", minutes=1)],
                           [a, b])

        results = {m.entry.cwd: m.instance_id for m in index.search("deploy")}

        assert results == {"/a": "A", "/b": "B"}

    def test_resume_id_scopes_to_tab(self):
        a = instance("A", "/a")
        a.windows.append(Window(index=2, name="claude-2", agent=AGENT_CLAUDE, resume_id="sess-9"))

        assert resolve_entry(entry("x", cwd="/a", session_id="sess-9"), [a]) == ("A", 2)

    def test_resume_id_on_primary_is_not_a_tab(self):
        a = instance("A", "/a", resume_id="sess-1")
        assert resolve_entry(entry("x", session_id="sess-1"), [a]) == ("A", None)

    def test_resume_id_beats_path(self):
        a = instance("A", "/shared")
        b = instance("B", "/other", resume_id="sess-b")
        assert resolve_entry(entry("x", cwd="/shared", session_id="sess-b"), [a, b]) == ("B", None)

    def test_trailing_slash_normalized(self):
        assert resolve_entry(entry("x", cwd="/a/"), [instance("A", "/a")]) == ("A", None)

    def test_no_match(self):
        assert resolve_entry(entry("x", cwd="/elsewhere"), [instance("A", "/a")]) == (None, None)

    def test_other_agent_ignored(self):
        gemini_entry = entry("x", cwd="/a", agent="gemini")
        assert resolve_entry(gemini_entry, [instance("A", "/a")]) == (None, None)

    def test_terminal_entry_keeps_its_tab(self):
        captured = entry("ls", agent=AGENT_TERMINAL, instance_id="A", tab_index=1)
        assert resolve_entry(captured, []) == ("A", 1)


class TestSearch:
    """Test substring search."""

    def test_case_folded_substring(self):
        index = index_with([entry("Deploy the API"), entry("unrelated", minutes=1)], [])
        assert [m.entry.content for m in index.search("dEPLOY")] == ["Deploy the API"]

    def test_empty_query_matches_everything(self):
        index = index_with([entry("a"), entry("b", minutes=1)], [])
        assert len(index.search("")) == 2

    def test_newest_first_and_limit(self):
        index = index_with([entry(f"item {n}", minutes=n) for n in range(5)], [])
        results = index.search("item", limit=2)
        assert [m.entry.content for m in results] == ["item 4", "item 3"]

    def test_snippet_filled(self):
        index = index_with([entry("please deploy")], [])
        assert index.search("deploy")[0].entry.snippet == "please deploy"

    def test_not_loaded_until_built(self):
        index = HistoryIndex(profiles=[])
        assert not index.is_loaded
        assert index.search("x") == []
        index.build([])
        assert index.is_loaded

    def test_set_instances_changes_resolution(self):
        index = index_with([entry("deploy", cwd="/a")], [])
        assert index.search("deploy")[0].instance_id is None
        index.set_instances([instance("A", "/a")])
        assert index.search("deploy")[0].instance_id == "A"


class TestBuild:
    """Test parsing profiles' history files."""

    def test_parse_cache_and_failures(self, tmp_path):
        good = tmp_path / "good.jsonl"
        good.write_text("x")
        missing = tmp_path / "missing.jsonl"
        calls = []

        def parse(path, ctx):
            calls.append(path)
            return [entry("hello", source_path=str(path))]

        profile = AgentProfile(
            kind=AGENT_CLAUDE, display_name="Claude", icon="c", command="claude",
            history_files=lambda ctx: [good, missing],
            parse_history=parse,
        )
        index = HistoryIndex(profiles=[profile])

        assert index.build([]) == 1
        assert index.build([]) == 1
        # Unchanged file parsed once; missing file never parsed
        assert calls == [good]

    def test_profiles_without_history_skipped(self):
        profile = AgentProfile(kind="x", display_name="X", icon="x")
        assert HistoryIndex(profiles=[profile]).build([]) == 0


class TestSnippets:
    """Test snippet extraction."""

    def test_window_around_match(self):
        content = "a" * 50 + " needle " + "b" * 100
        snippet = extract_snippet(content, "NEEDLE")
        assert snippet.startswith("...")
        assert snippet.endswith("...")
        assert "needle" in snippet

    def test_role_prefix_removed(self):
        assert extract_snippet("User: fix it", "fix") == "fix it"

    def test_no_match_truncates(self):
        assert extract_snippet("z" * 150, "q") == "z" * 100 + "..."


class TestLoadConversation:
    """Test loading a full conversation from a hit."""

    def test_terminal_entry_is_single(self):
        captured = entry("ls -la", agent=AGENT_TERMINAL, instance_id="A", tab_index=1)
        messages = HistoryIndex(profiles=[]).load_conversation(captured)
        assert [m.content for m in messages] == ["ls -la"]

    def test_claude_transcript(self, tmp_path):
        path = tmp_path / "0b3f2c4e-1111-2222-3333-444455556666.jsonl"
        path.write_text("\n".join(json.dumps(r) for r in [
            {"type": "user", "message": {"role": "user", "content": "q1"}},
            {"type": "assistant", "message": {"role": "assistant", "content": "a1"}},
        ]))
        hit = parse_claude_file(path)[0]
        messages = HistoryIndex(profiles=[]).load_conversation(hit)
        assert [(m.role, m.content) for m in messages] == [(ROLE_USER, "q1"), (ROLE_ASSISTANT, "a1")]

    def test_unreadable_source_falls_back(self, tmp_path):
        hit = entry("q", source_path=str(tmp_path / "gone.jsonl"))
        assert [m.content for m in HistoryIndex(profiles=[]).load_conversation(hit)] == ["q"]
