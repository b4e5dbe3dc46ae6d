"""
Unit tests for activity classification.
"""

from asmgr.activity import ActivityClassifier, EMPTY_TEASER
from asmgr.agent_profiles import get_profile
from asmgr.status_constants import (
    ACTIVITY_BUSY,
    ACTIVITY_IDLE,
    ACTIVITY_WAITING,
    AGENT_CLAUDE,
)
from asmgr.status_patterns import FilterConfig

RULE = "─" * 40


def claude_classifier():
    profile = get_profile(AGENT_CLAUDE)
    return ActivityClassifier(profile.filters, profile.waiting_markers)


class TestClassify:
    """Test the Idle / Busy / Waiting rules."""

    def test_thinking_then_same_then_prompt(self):
        """Busy, then Idle for an unchanged screen, then Waiting."""
        classifier = claude_classifier()

        first = classifier.classify("Working on it\n✻ thinking…")
        second = classifier.classify("Working on it\n✻ thinking…", first.fingerprint)
        third = classifier.classify(
            "Working on it\nDo you want to proceed? (y/N)", second.fingerprint,
        )

        assert [first.activity, second.activity, third.activity] == [
            ACTIVITY_BUSY, ACTIVITY_IDLE, ACTIVITY_WAITING,
        ]

    def test_pure_function(self):
        classifier = claude_classifier()
        capture = "line one\nline two"
        assert classifier.classify(capture, "x") == classifier.classify(capture, "x")

    def test_unchanged_waiting_screen_is_idle(self):
        classifier = claude_classifier()
        capture = "Allow once?"
        first = classifier.classify(capture)
        assert first.activity == ACTIVITY_WAITING
        assert classifier.classify(capture, first.fingerprint).activity == ACTIVITY_IDLE

    def test_chrome_changes_do_not_count(self):
        """Footer and separators are ignored when fingerprinting."""
        classifier = claude_classifier()
        before = classifier.classify(f"Result: 42\n{RULE}\n? for shortcuts")
        after = classifier.classify(f"Result: 42\n{RULE}\n? for shortcuts  Context left 10%",
                                    before.fingerprint)
        assert after.activity == ACTIVITY_IDLE

    def test_numbered_menu_is_waiting(self):
        classifier = ActivityClassifier()
        result = classifier.classify("Pick one\n❯ 1. Yes\n  2. No\n\n")
        # Last non-blank line is "2. No"
        assert result.activity == ACTIVITY_WAITING

    def test_custom_waiting_marker(self):
        classifier = ActivityClassifier(waiting_markers=["Approve Plan"])
        assert classifier.classify("please approve plan now").activity == ACTIVITY_WAITING

    def test_empty_capture(self):
        result = ActivityClassifier().classify("")
        assert result.activity == ACTIVITY_BUSY
        assert result.teaser == EMPTY_TEASER


class TestTeaser:
    """Test the status-line teaser."""

    def test_last_content_line(self):
        classifier = claude_classifier()
        result = classifier.classify(f"Edited main.py\n\n{RULE}\n>\n{RULE}\n? for shortcuts")
        assert result.teaser.plain == "Edited main.py"

    def test_teaser_cropped_to_width(self):
        result = ActivityClassifier().classify("x" * 100, width=10)
        assert result.teaser.plain == "x" * 10

    def test_replacement_used(self):
        classifier = ActivityClassifier(FilterConfig(show_contains=["Generating"],
                                                     show_as=["Generating..."]))
        assert classifier.classify("Generating 40%").teaser.plain == "Generating..."


class TestResultDefaults:
    """Test ActivityResult construction and importability of its users."""

    def test_default_teaser_is_empty_line(self):
        from asmgr.activity import ActivityResult

        result = ActivityResult(ACTIVITY_BUSY, "abc")

        assert result.teaser == EMPTY_TEASER
        assert result.teaser.plain == ""

    def test_captured_lines_are_hashable(self):
        from asmgr.status_patterns import CapturedLine

        assert len({CapturedLine("a", "a"), CapturedLine("a", "a")}) == 1

    def test_controller_and_cli_import(self):
        import asmgr.cli
        import asmgr.controller
        import asmgr.instance

        assert asmgr.controller.Controller
        assert asmgr.instance.Instance
        assert asmgr.cli.main
